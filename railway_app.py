"""
🚂 Railway Email Tracking App
Tracking pixel plus open-status API, backed by a rotating JSON-lines log
"""

import logging
import sys

# Process stats for the health check (not available on Windows)
try:
    import resource
    RESOURCE_AVAILABLE = True
except ImportError:
    RESOURCE_AVAILABLE = False

from flask import Flask, Response, jsonify, request
from werkzeug.exceptions import HTTPException

from email_tracker import TRACK_FAILED, EmailTracker
from event_log import EventLogStore, format_timestamp, utc_now
from tracking_config import TRACKING_CONFIG
from tracking_queries import TrackingQueryService
from tracking_rules import InvalidTrackingId, RequestClassifier

# Configure logging
logging.basicConfig(
    level=getattr(logging, TRACKING_CONFIG['LOG_LEVEL'], logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

SERVICE_NAME = 'Email Tracking Pixel'
VERSION = '1.0.0'

PIXEL_HEADERS = {
    'Cache-Control': 'no-cache, no-store, must-revalidate',
    'Pragma': 'no-cache',
    'Expires': '0'
}

CORS_HEADERS = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Methods': 'GET, POST, OPTIONS',
    'Access-Control-Allow-Headers': 'Origin, X-Requested-With, Content-Type, Accept'
}


def get_client_ip():
    """First hop of X-Forwarded-For when behind Railway's proxy, else the peer address."""
    forwarded = request.headers.get('X-Forwarded-For', '')
    first_hop = forwarded.split(',')[0].strip()
    return first_hop or request.remote_addr or ''


def get_memory_usage():
    """Peak resident set size of this process, or None where unsupported."""
    if not RESOURCE_AVAILABLE:
        return {'maxRssBytes': None}
    max_rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # Linux reports kilobytes, macOS bytes
    if sys.platform != 'darwin':
        max_rss *= 1024
    return {'maxRssBytes': max_rss}


def pixel_response(pixel_data):
    return Response(pixel_data, mimetype='image/png', headers=PIXEL_HEADERS)


def build_store(settings):
    """Create and initialize the event log store described by `settings`."""
    store = EventLogStore(
        settings['LOG_FILE'],
        max_log_size=settings['MAX_LOG_SIZE'],
        replay_on_startup=settings['REPLAY_ON_STARTUP'],
        fsync=settings['FSYNC']
    )
    try:
        store.initialize()
    except OSError as e:
        # Keep serving pixels; appends will report their own failures
        logger.error(f"❌ Could not initialize tracking log {settings['LOG_FILE']}: {e}")
    return store


def create_app(config=None, store=None):
    """
    Build the Flask app.

    `config` overrides keys of TRACKING_CONFIG. A ready `store` can be
    passed in (it must already be initialized); otherwise one is built from
    the configured log file.
    """
    settings = dict(TRACKING_CONFIG)
    settings.update(config or {})

    app = Flask(__name__)
    app.config['TRACKING'] = settings

    if store is None:
        store = build_store(settings)

    classifier = RequestClassifier(settings['BOT_TOKENS'], settings['PROXY_TOKENS'])
    tracker = EmailTracker(
        store,
        classifier,
        min_id_length=settings['MIN_ID_LENGTH'],
        max_id_length=settings['MAX_ID_LENGTH']
    )
    queries = TrackingQueryService(store.index)
    app.extensions['email_tracking'] = {
        'store': store,
        'tracker': tracker,
        'queries': queries
    }

    @app.after_request
    def add_default_headers(response):
        response.headers.update(CORS_HEADERS)
        response.headers['X-Content-Type-Options'] = 'nosniff'
        logger.info(f'{get_client_ip()} "{request.method} {request.full_path.rstrip("?")}" {response.status_code}')
        return response

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        if isinstance(e, HTTPException):
            return e
        logger.exception(f"❌ Internal server error: {e}")
        return jsonify({'success': False, 'error': 'Internal server error'}), 500

    @app.route('/')
    def home():
        """Home page with service info."""
        return jsonify({
            'service': SERVICE_NAME,
            'status': 'running',
            'version': VERSION,
            'endpoints': {
                'tracking_pixel': '/track/<tracking_id>',
                'email_status': '/api/email/<tracking_id>/status',
                'bulk_status': '/api/emails/status',
                'logs': '/api/logs',
                'health_check': '/health'
            }
        })

    @app.route('/track/<tracking_id>')
    @app.route('/track/<tracking_id>/<cache_buster>')
    @app.route('/track/<tracking_id>/<cache_buster>/<nonce>')
    def track_pixel(tracking_id, cache_buster=None, nonce=None):
        """
        Serve the tracking pixel and record email open.
        This is the main endpoint that email clients will call; extra path
        segments are cache busters and are ignored.
        """
        try:
            tracker.validate_tracking_id(tracking_id)
        except InvalidTrackingId as e:
            logger.warning(f"⚠️ Invalid email ID format: {tracking_id[:160]!r} ({e})")
            return Response('Invalid email ID', status=400, mimetype='text/plain')

        user_agent = request.headers.get('User-Agent', '')
        referer = request.headers.get('Referer') or request.headers.get('Referrer', '')
        ip_address = get_client_ip()
        logger.info(f"🔍 Tracking request from {ip_address} UA: {user_agent}")

        try:
            outcome = tracker.track_email_open(tracking_id, user_agent, ip_address, referer)
            if outcome.status == TRACK_FAILED:
                logger.error(f"❌ Open not recorded for {tracking_id}: {outcome.result.error}")
        except Exception as e:
            # Still return a pixel even if tracking fails
            logger.exception(f"❌ Error tracking email open: {e}")

        return pixel_response(tracker.create_tracking_pixel())

    @app.route('/api/email/<tracking_id>/status')
    def email_status(tracking_id):
        """Open status and full open history for one email."""
        logger.info(f"📊 Checking status for: {tracking_id}")
        status = queries.status(tracking_id)
        return jsonify({'success': True, 'emailId': tracking_id, **status})

    @app.route('/api/emails/status', methods=['POST'])
    def bulk_email_status():
        """Open status for many emails at once."""
        logger.info("📩 Bulk status request")
        data = request.get_json(silent=True)
        email_ids = data.get('emailIds') if isinstance(data, dict) else None

        if not isinstance(email_ids, list) or not all(isinstance(i, str) for i in email_ids):
            logger.warning("❌ Invalid emailIds payload")
            return jsonify({'success': False, 'error': 'Invalid input'}), 400

        return jsonify({'success': True, 'results': queries.bulk_status(email_ids)})

    @app.route('/api/logs')
    def dump_logs():
        """Dump every open event held in memory."""
        logger.info("🧾 Dumping all logs")
        dump = queries.dump_all()
        return jsonify({'success': True, 'total': dump['total'], 'logs': dump['events']})

    @app.route('/health')
    @app.route('/api/health')
    def health_check():
        """Health check endpoint for monitoring."""
        return jsonify({
            'status': 'healthy',
            'service': SERVICE_NAME,
            'version': VERSION,
            'timestamp': format_timestamp(utc_now()),
            'commit': settings['COMMIT'],
            'memoryUsage': get_memory_usage()
        })

    return app
