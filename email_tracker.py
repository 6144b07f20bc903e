"""
📧 Email Tracking System
Records email opens from the tracking pixel into the event log
"""

import logging
import uuid
from collections import namedtuple
from io import BytesIO

from PIL import Image

from event_log import OpenEvent, utc_now
from tracking_rules import MAX_ID_LENGTH, MIN_ID_LENGTH, RequestClassifier, validate_tracking_id

logger = logging.getLogger(__name__)

TRACK_LOGGED = 'logged'
TRACK_BOT = 'bot'
TRACK_FAILED = 'failed'

TrackOutcome = namedtuple('TrackOutcome', ['status', 'classification', 'result'])


class EmailTracker:
    def __init__(self, store, classifier=None, min_id_length=MIN_ID_LENGTH, max_id_length=MAX_ID_LENGTH):
        """Initialize the Email Tracker on top of an event log store."""
        self.store = store
        self.classifier = classifier or RequestClassifier()
        self.min_id_length = min_id_length
        self.max_id_length = max_id_length
        self._pixel = None

    def generate_tracking_id(self):
        """Generate a unique tracking ID."""
        return str(uuid.uuid4())

    def validate_tracking_id(self, tracking_id):
        return validate_tracking_id(tracking_id, self.min_id_length, self.max_id_length)

    def create_tracking_pixel(self):
        """Create a 1x1 transparent PNG pixel (rendered once, then reused)."""
        if self._pixel is None:
            img = Image.new('RGBA', (1, 1), (0, 0, 0, 0))
            buffer = BytesIO()
            img.save(buffer, format='PNG')
            self._pixel = buffer.getvalue()
        return self._pixel

    def add_tracking_to_email(self, html_content, tracking_id, base_url):
        """
        Add tracking pixel to email HTML content.
        """
        tracking_pixel = f'<img src="{base_url.rstrip("/")}/track/{tracking_id}" width="1" height="1" style="display:none;" alt="" />'

        # Add tracking pixel before closing body tag
        if '</body>' in html_content:
            html_content = html_content.replace('</body>', f'{tracking_pixel}\n</body>', 1)
        else:
            # If no body tag, append to end
            html_content += f'\n{tracking_pixel}'

        return html_content

    def track_email_open(self, tracking_id, user_agent="", ip_address="", referer=""):
        """
        Track when an email is opened.

        The tracking ID must already be valid (see validate_tracking_id).
        Bots are skipped; everything else, image proxies included, is
        appended to the log. Write failures are reported in the outcome,
        never raised.
        """
        classification = self.classifier.classify(user_agent, referer)

        if classification.is_bot:
            logger.info(f"🤖 Bot detected, not logging: {tracking_id}")
            return TrackOutcome(TRACK_BOT, classification, None)

        event = OpenEvent(
            tracking_id=tracking_id,
            observed_at=utc_now(),
            ip_address=ip_address or '',
            user_agent=user_agent or '',
            referrer=referer or '',
            is_proxy_fetch=classification.is_proxy_fetch,
        )
        result = self.store.append(event)

        if not result.ok:
            logger.warning(f"⚠️ Failed to track email open for: {tracking_id}")
            return TrackOutcome(TRACK_FAILED, classification, result)

        proxy_note = " (via image proxy)" if classification.is_proxy_fetch else ""
        logger.info(f"✅ Logged open: {tracking_id}{proxy_note}")
        return TrackOutcome(TRACK_LOGGED, classification, result)
