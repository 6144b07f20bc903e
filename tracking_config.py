"""
🔧 Tracking Configuration
Settings for the tracking server, read from the environment (and .env)
"""

import os
import socket

import dotenv

dotenv.load_dotenv()

DEFAULT_BOT_TOKENS = ('bot', 'crawler', 'spider', 'slurp')
DEFAULT_PROXY_TOKENS = ('google', 'ggpht', 'googleusercontent')


def get_local_ip():
    """Get your local IP address for network access"""
    try:
        # Connect to a remote server to get local IP
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            s.connect(("8.8.8.8", 80))
            return s.getsockname()[0]
        finally:
            s.close()
    except OSError:
        return "127.0.0.1"


def _env_bool(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_tokens(name, default):
    value = os.environ.get(name)
    if not value:
        return tuple(default)
    return tuple(token.strip().lower() for token in value.split(',') if token.strip())


def load_tracking_config(overrides=None):
    """
    Build a fresh configuration dict from environment variables.
    Keys in `overrides` win over the environment.
    """
    port = int(os.environ.get('PORT', 5000))
    config = {
        'HOST': os.environ.get('HOST', '0.0.0.0'),
        'PORT': port,
        'DEBUG': _env_bool('DEBUG', False),
        'BASE_URL': os.environ.get('BASE_URL') or f"http://{get_local_ip()}:{port}",
        'LOG_FILE': os.environ.get('LOG_FILE') or os.environ.get('TRACKING_LOG_FILE', 'tracklog.jsonl'),
        'MAX_LOG_SIZE': int(os.environ.get('MAX_LOG_SIZE', 5 * 1024 * 1024)),
        'REPLAY_ON_STARTUP': _env_bool('REPLAY_ON_STARTUP', True),
        'FSYNC': _env_bool('FSYNC', True),
        'BOT_TOKENS': _env_tokens('BOT_TOKENS', DEFAULT_BOT_TOKENS),
        'PROXY_TOKENS': _env_tokens('PROXY_TOKENS', DEFAULT_PROXY_TOKENS),
        'MIN_ID_LENGTH': int(os.environ.get('MIN_ID_LENGTH', 8)),
        'MAX_ID_LENGTH': int(os.environ.get('MAX_ID_LENGTH', 128)),
        'LOG_LEVEL': os.environ.get('LOG_LEVEL', 'INFO').upper(),
        'COMMIT': os.environ.get('RAILWAY_GIT_COMMIT_SHA') or os.environ.get('GIT_COMMIT', 'unknown'),
    }
    if overrides:
        config.update(overrides)
    return config


# Configuration
TRACKING_CONFIG = load_tracking_config()
