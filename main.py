"""
🚂 Main entry point for Railway deployment
This file tells Railway how to start the email tracking app
"""

import logging

from railway_app import create_app
from tracking_config import TRACKING_CONFIG

logger = logging.getLogger(__name__)

app = create_app()

if __name__ == '__main__':
    # Railway will set the PORT environment variable
    logger.info(f"🚀 Email tracker server running on port {TRACKING_CONFIG['PORT']}")
    app.run(host=TRACKING_CONFIG['HOST'], port=TRACKING_CONFIG['PORT'], debug=TRACKING_CONFIG['DEBUG'])
