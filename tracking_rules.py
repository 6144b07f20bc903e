"""
🛡️ Tracking Rules
Tracking ID validation and request classification (bots vs. image proxies)
"""

import re
from collections import namedtuple

from tracking_config import DEFAULT_BOT_TOKENS, DEFAULT_PROXY_TOKENS

MIN_ID_LENGTH = 8
MAX_ID_LENGTH = 128

_ID_CHARSET = re.compile(r'[A-Za-z0-9_-]+')

RequestClassification = namedtuple('RequestClassification', ['is_bot', 'is_proxy_fetch'])


class InvalidTrackingId(ValueError):
    """Raised when a tracking ID fails the format check."""


def validate_tracking_id(raw, min_length=MIN_ID_LENGTH, max_length=MAX_ID_LENGTH):
    """
    Return the tracking ID if it is well formed.
    Raises InvalidTrackingId on wrong type, length or characters.
    """
    if not isinstance(raw, str):
        raise InvalidTrackingId("Tracking ID must be a string")
    if not min_length <= len(raw) <= max_length:
        raise InvalidTrackingId(
            f"Tracking ID length {len(raw)} outside {min_length}-{max_length}"
        )
    if not _ID_CHARSET.fullmatch(raw):
        raise InvalidTrackingId("Tracking ID contains invalid characters")
    return raw


def is_valid_tracking_id(raw, min_length=MIN_ID_LENGTH, max_length=MAX_ID_LENGTH):
    try:
        validate_tracking_id(raw, min_length, max_length)
    except InvalidTrackingId:
        return False
    return True


class RequestClassifier:
    """Decide whether a pixel fetch came from a bot or an image proxy."""

    def __init__(self, bot_tokens=DEFAULT_BOT_TOKENS, proxy_tokens=DEFAULT_PROXY_TOKENS):
        self.bot_tokens = tuple(token.lower() for token in bot_tokens)
        self.proxy_tokens = tuple(token.lower() for token in proxy_tokens)

    def classify(self, user_agent, referrer=None):
        """
        Classify a request by its headers. Never fails: anything that is not
        a string is treated as an empty user agent.

        Proxy fetches (e.g. GoogleImageProxy) are real opens routed through
        the mail provider, so they are tagged rather than filtered.
        """
        if not isinstance(user_agent, str):
            return RequestClassification(False, False)

        ua = user_agent.lower()
        is_bot = any(token in ua for token in self.bot_tokens)
        is_proxy_fetch = any(token in ua for token in self.proxy_tokens)
        return RequestClassification(is_bot, is_proxy_fetch)


_default_classifier = RequestClassifier()


def classify_request(user_agent, referrer=None):
    return _default_classifier.classify(user_agent, referrer)
