"""
Flask Web Application for the billing engine.
Provides the REST API used by the property-management dashboard.
"""

import logging
from datetime import datetime

from flask import Flask, jsonify, request

from billing.exceptions import BillingError

logger = logging.getLogger(__name__)


def create_app(services=None, config=None, db_url=None):
    """
    Create Flask application with the API blueprint registered.

    Args:
        services: BillingServices instance (built from config if omitted)
        config: SchedulerConfig instance (optional)
        db_url: Database URL (optional, will use config loader if not provided)

    Returns:
        Flask application
    """
    app = Flask(__name__)

    if services is None:
        from scheduler.services import build_services
        services = build_services(config=config, db_url=db_url)

    app.services = services
    app.web_started_at = datetime.now()

    @app.after_request
    def add_api_headers(response):
        if '/api/' in request.path:
            response.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate, max-age=0'
            response.headers['Pragma'] = 'no-cache'
        response.headers['X-Content-Type-Options'] = 'nosniff'
        return response

    @app.errorhandler(BillingError)
    def handle_billing_error(error):
        logger.warning(f"{request.method} {request.path} rejected: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(ValueError)
    def handle_value_error(error):
        return jsonify({'error': str(error), 'code': 'invalid_request'}), 400

    from web.routes.api import api_bp
    app.register_blueprint(api_bp)

    @app.route('/health')
    def health():
        return jsonify({
            'status': 'healthy',
            'timestamp': datetime.now().isoformat()
        })

    return app


def run_app(host=None, port=None, debug=False, db_url=None):
    """Run the Flask application with the scheduler started in-process."""
    from scheduler.config import SchedulerConfig
    from scheduler.services import build_services

    config = SchedulerConfig.from_config()
    services = build_services(config=config, db_url=db_url)
    services.scheduler.start()

    app = create_app(services)
    try:
        app.run(host=host or config.web_host, port=port or config.web_port, debug=debug, use_reloader=False)
    finally:
        services.close()


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
    run_app(debug=True)
