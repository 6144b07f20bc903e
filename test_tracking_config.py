"""
🧪 Tests for environment-driven configuration
"""

from tracking_config import DEFAULT_BOT_TOKENS, load_tracking_config


def test_defaults(monkeypatch):
    for name in ('PORT', 'MAX_LOG_SIZE', 'REPLAY_ON_STARTUP', 'BOT_TOKENS', 'LOG_FILE', 'TRACKING_LOG_FILE',
                 'BASE_URL', 'RAILWAY_GIT_COMMIT_SHA', 'GIT_COMMIT'):
        monkeypatch.delenv(name, raising=False)

    config = load_tracking_config()
    assert config['PORT'] == 5000
    assert config['MAX_LOG_SIZE'] == 5 * 1024 * 1024
    assert config['REPLAY_ON_STARTUP'] is True
    assert config['BOT_TOKENS'] == DEFAULT_BOT_TOKENS
    assert config['LOG_FILE'] == 'tracklog.jsonl'
    assert config['BASE_URL'].endswith(':5000')
    assert config['COMMIT'] == 'unknown'


def test_environment_values(monkeypatch):
    monkeypatch.setenv('PORT', '8080')
    monkeypatch.setenv('MAX_LOG_SIZE', '1024')
    monkeypatch.setenv('REPLAY_ON_STARTUP', 'false')
    monkeypatch.setenv('BOT_TOKENS', 'Bot, Scanner ,')
    monkeypatch.setenv('BASE_URL', 'https://track.example.com')
    monkeypatch.setenv('RAILWAY_GIT_COMMIT_SHA', 'abc123')

    config = load_tracking_config()
    assert config['PORT'] == 8080
    assert config['MAX_LOG_SIZE'] == 1024
    assert config['REPLAY_ON_STARTUP'] is False
    assert config['BOT_TOKENS'] == ('bot', 'scanner')
    assert config['BASE_URL'] == 'https://track.example.com'
    assert config['COMMIT'] == 'abc123'


def test_overrides_win(monkeypatch):
    monkeypatch.setenv('PORT', '8080')
    assert load_tracking_config({'PORT': 9000})['PORT'] == 9000


def test_log_file_comes_from_log_file_variable(monkeypatch):
    monkeypatch.setenv('LOG_FILE', '/var/data/opens.jsonl')
    monkeypatch.setenv('TRACKING_LOG_FILE', '/tmp/ignored.jsonl')
    assert load_tracking_config()['LOG_FILE'] == '/var/data/opens.jsonl'


def test_tracking_log_file_still_works_as_fallback(monkeypatch):
    monkeypatch.delenv('LOG_FILE', raising=False)
    monkeypatch.setenv('TRACKING_LOG_FILE', '/srv/tracklog.jsonl')
    assert load_tracking_config()['LOG_FILE'] == '/srv/tracklog.jsonl'
