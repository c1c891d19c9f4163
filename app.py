"""
WSGI entry point for the payment diagnostics application.

Usage Examples:
    # Production WSGI deployment
    gunicorn "app:application"

    # Development server
    export APP_ENV=development
    python app.py --port 5000
"""

import argparse
import os

import structlog

from src.app import create_app

logger = structlog.get_logger(__name__)

# Primary entry point for Gunicorn/uWSGI servers
application = create_app()
app = application


def main() -> None:
    parser = argparse.ArgumentParser(description='Payment diagnostics development server')
    parser.add_argument('--host', default=os.getenv('FLASK_HOST', '127.0.0.1'))
    parser.add_argument('--port', type=int, default=int(os.getenv('FLASK_PORT', '5000')))
    parser.add_argument('--debug', action='store_true',
                        default=os.getenv('FLASK_DEBUG', 'false').lower() in ('true', '1', 'yes'))
    args = parser.parse_args()

    logger.info("Starting development server", host=args.host, port=args.port, debug=args.debug)
    application.run(host=args.host, port=args.port, debug=args.debug, use_reloader=args.debug)


if __name__ == '__main__':
    main()
