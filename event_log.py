"""
📒 Tracking Event Log
Append-only JSON-lines log of email opens with size-based rotation,
plus the in-memory index that answers status queries.
"""

import datetime
import json
import logging
import os
import re
import threading
import time
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_MAX_LOG_SIZE = 5 * 1024 * 1024


def utc_now():
    return datetime.datetime.now(datetime.timezone.utc)


def format_timestamp(dt):
    """ISO-8601 UTC with millisecond precision, e.g. 2026-10-19T12:00:00.000Z"""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    dt = dt.astimezone(datetime.timezone.utc)
    return dt.strftime('%Y-%m-%dT%H:%M:%S') + f".{dt.microsecond // 1000:03d}Z"


def parse_timestamp(value):
    if not isinstance(value, str):
        raise ValueError(f"Timestamp must be a string, got {type(value).__name__}")
    dt = datetime.datetime.fromisoformat(value.replace('Z', '+00:00'))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    return dt


@dataclass(frozen=True)
class OpenEvent:
    """One observed fetch of the tracking pixel."""

    tracking_id: str
    observed_at: datetime.datetime
    ip_address: str = ''
    user_agent: str = ''
    referrer: str = ''
    is_proxy_fetch: bool = False

    @property
    def timestamp(self):
        return format_timestamp(self.observed_at)

    def to_dict(self):
        return {
            'emailId': self.tracking_id,
            'timestamp': self.timestamp,
            'ip': self.ip_address,
            'userAgent': self.user_agent,
            'referrer': self.referrer,
            'isProxyFetch': self.is_proxy_fetch,
        }

    def to_json_line(self):
        return json.dumps(self.to_dict(), ensure_ascii=False) + '\n'

    @classmethod
    def from_dict(cls, data):
        if not isinstance(data, dict):
            raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
        # Older logs carry the Gmail-specific flag name
        is_proxy = data.get('isProxyFetch', data.get('isGmailProxy', False))
        if not isinstance(is_proxy, bool):
            raise ValueError(f"isProxyFetch must be a boolean, got {is_proxy!r}")
        tracking_id = data['emailId']
        if not isinstance(tracking_id, str) or not tracking_id:
            raise ValueError(f"emailId must be a non-empty string, got {tracking_id!r}")
        return cls(
            tracking_id=tracking_id,
            observed_at=parse_timestamp(data['timestamp']),
            ip_address=_optional_text(data, 'ip'),
            user_agent=_optional_text(data, 'userAgent'),
            referrer=_optional_text(data, 'referrer'),
            is_proxy_fetch=is_proxy,
        )

    @classmethod
    def from_json_line(cls, line):
        return cls.from_dict(json.loads(line))


def _optional_text(data, key):
    value = data.get(key)
    if value is None:
        return ''
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string, got {value!r}")
    return value


def summarize(events):
    """Open summary for one tracking ID: count plus first/last timestamps."""
    if not events:
        return {
            'opened': False,
            'openCount': 0,
            'firstOpened': None,
            'lastOpened': None,
        }
    # min/max rather than first/last: replayed archives may carry clock skew
    first = min(events, key=lambda e: e.observed_at)
    last = max(events, key=lambda e: e.observed_at)
    return {
        'opened': True,
        'openCount': len(events),
        'firstOpened': first.timestamp,
        'lastOpened': last.timestamp,
    }


class EventIndex:
    """In-memory map of tracking ID -> open events, in append order."""

    def __init__(self):
        self._lock = threading.Lock()
        self._by_id = {}
        self._events = []

    def record(self, event):
        with self._lock:
            self._by_id.setdefault(event.tracking_id, []).append(event)
            self._events.append(event)

    def lookup(self, tracking_id):
        with self._lock:
            return list(self._by_id.get(tracking_id, ()))

    def summary(self, tracking_id):
        return summarize(self.lookup(tracking_id))

    def bulk_lookup(self, tracking_ids):
        return {tracking_id: self.summary(tracking_id) for tracking_id in tracking_ids}

    def dump_all(self):
        with self._lock:
            return list(self._events)

    def clear(self):
        with self._lock:
            self._by_id.clear()
            self._events.clear()

    def __len__(self):
        with self._lock:
            return len(self._events)


@dataclass(frozen=True)
class AppendResult:
    ok: bool
    event: OpenEvent
    error: str = None
    rotated_to: Path = None


class EventLogStore:
    """
    Durable store for open events.

    Every append goes to the active JSON-lines file first and only then into
    the index, all under one lock, so the index never holds an event that
    is missing from disk. When the active file grows past `max_log_size`
    it is renamed to `<stem>_<epoch ms><suffix>` before the next append.
    """

    def __init__(self, log_file, max_log_size=DEFAULT_MAX_LOG_SIZE,
                 replay_on_startup=True, fsync=True, index=None):
        self.log_file = Path(log_file)
        self.max_log_size = max_log_size
        self.replay_on_startup = replay_on_startup
        self.fsync = fsync
        self.index = index if index is not None else EventIndex()
        self._write_lock = threading.Lock()
        self._archive_pattern = re.compile(
            rf'^{re.escape(self.log_file.stem)}_(\d+)(?:-(\d+))?{re.escape(self.log_file.suffix)}$'
        )

    def initialize(self):
        """Create the log file if needed, repair a torn last line and replay history."""
        self.log_file.parent.mkdir(parents=True, exist_ok=True)
        if not self.log_file.exists():
            self.log_file.write_text('', encoding='utf-8')
            logger.info(f"🆕 Initialized new tracking log file: {self.log_file}")
        else:
            self._repair_trailing_line()

        if self.replay_on_startup:
            self.replay()
        else:
            logger.info("⏭️ Replay disabled - starting with an empty index")
        return self

    def append(self, event):
        """
        Write one event and index it. I/O errors come back as a failed
        AppendResult and leave the index untouched.
        """
        rotated_to = None
        with self._write_lock:
            try:
                rotated_to = self._rotate_if_needed()
                self._write_line(event.to_json_line())
            except OSError as e:
                logger.error(f"❌ Failed to log open for {event.tracking_id}: {e}")
                return AppendResult(ok=False, event=event, error=str(e), rotated_to=rotated_to)
            self.index.record(event)
        logger.debug(f"📥 Cached entry: {event.tracking_id}")
        return AppendResult(ok=True, event=event, rotated_to=rotated_to)

    def rotate_if_needed(self):
        with self._write_lock:
            return self._rotate_if_needed()

    def rotated_files(self):
        """Archived log files, oldest rotation first."""
        directory = self.log_file.parent
        if not directory.exists():
            return []
        archives = []
        for path in directory.iterdir():
            match = self._archive_pattern.match(path.name)
            if match:
                archives.append((int(match.group(1)), int(match.group(2) or 0), path))
        archives.sort()
        return [path for _, _, path in archives]

    def replay(self):
        """Rebuild the index from archived and active log files."""
        with self._write_lock:
            self.index.clear()
            loaded = 0
            skipped = 0
            paths = self.rotated_files() + [self.log_file]
            for path in paths:
                if not path.exists():
                    continue
                try:
                    file_loaded, file_skipped = self._load_file(path)
                except OSError as e:
                    logger.error(f"❌ Could not read log file {path}: {e}")
                    continue
                loaded += file_loaded
                skipped += file_skipped

        if skipped:
            logger.warning(f"⚠️ Skipped {skipped} malformed log line(s) during replay")
        logger.info(f"📚 Replayed {loaded} open events from {len(paths)} log file(s)")
        return loaded

    def _load_file(self, path):
        loaded = 0
        skipped = 0
        with open(path, 'r', encoding='utf-8', errors='replace') as f:
            for line_number, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    event = OpenEvent.from_json_line(line)
                except (ValueError, KeyError, TypeError) as e:
                    logger.warning(f"⚠️ {path.name}:{line_number} unreadable event: {e}")
                    skipped += 1
                    continue
                self.index.record(event)
                loaded += 1
        return loaded, skipped

    def _rotate_if_needed(self):
        try:
            size = self.log_file.stat().st_size
        except FileNotFoundError:
            return None
        if size <= self.max_log_size:
            return None

        backup = self._archive_name()
        self.log_file.rename(backup)
        self.log_file.write_text('', encoding='utf-8')
        logger.info(f"🔁 Log rotated: {backup}")
        return backup

    def _archive_name(self):
        stem = self.log_file.stem
        suffix = self.log_file.suffix
        millis = int(time.time() * 1000)
        candidate = self.log_file.with_name(f"{stem}_{millis}{suffix}")
        counter = 0
        while candidate.exists():
            counter += 1
            candidate = self.log_file.with_name(f"{stem}_{millis}-{counter}{suffix}")
        return candidate

    def _write_line(self, line):
        payload = line.encode('utf-8')
        with open(self.log_file, 'ab+', buffering=0) as f:
            start = f.seek(0, os.SEEK_END)
            if start:
                # A failed rollback can leave a torn tail; never glue onto it
                f.seek(start - 1)
                if f.read(1) != b'\n':
                    logger.warning(f"⚠️ Terminating a torn last line in {self.log_file}")
                    payload = b'\n' + payload
            data = memoryview(payload)
            try:
                while data:
                    written = f.write(data)
                    data = data[written:]
                if self.fsync:
                    os.fsync(f.fileno())
            except OSError:
                self._truncate(f, start)
                raise

    def _truncate(self, f, size):
        # Drop a partially written line so the next append starts clean
        try:
            f.truncate(size)
        except OSError as e:
            logger.error(f"❌ Could not roll back partial write in {self.log_file}: {e}")

    def _repair_trailing_line(self):
        with open(self.log_file, 'rb+') as f:
            f.seek(0, os.SEEK_END)
            if f.tell() == 0:
                return
            f.seek(-1, os.SEEK_END)
            if f.read(1) != b'\n':
                f.write(b'\n')
                logger.warning(f"⚠️ Terminated a torn last line in {self.log_file}")
