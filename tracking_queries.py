"""
📊 Tracking Queries
Read-only status lookups over the open-event index.
"""

from event_log import summarize


class TrackingQueryService:
    """Answers status questions from the index; never touches the raw log."""

    def __init__(self, index):
        self._index = index

    def status(self, tracking_id):
        """Summary plus every recorded open for one tracking ID."""
        events = self._index.lookup(tracking_id)
        summary = summarize(events)
        summary['opens'] = [event.to_dict() for event in events]
        return summary

    def bulk_status(self, tracking_ids):
        # dict.fromkeys drops duplicates but keeps request order
        return self._index.bulk_lookup(dict.fromkeys(tracking_ids))

    def dump_all(self):
        events = [event.to_dict() for event in self._index.dump_all()]
        return {'total': len(events), 'events': events}
