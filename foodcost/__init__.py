import logging
import os
from flask import Flask, jsonify, request, session
from flask_babel import Babel, gettext as _
from .ifood import IfoodError
from .models import db, ValidationError

logger = logging.getLogger(__name__)


def get_locale():
    selected_locale = request.args.get('lang', session.get('lang', 'pt_BR'))
    return selected_locale


def create_app(test_config=None):
    app = Flask(__name__)

    @app.before_request
    def before_request():
        """Capture language parameter and save to session for persistence across requests"""
        if 'lang' in request.args:
            session['lang'] = request.args.get('lang')

    # Load configurations
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///foodcost.db")
    app.config['SQLALCHEMY_DATABASE_URI'] = DATABASE_URL
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False

    # Secret key for session management
    app.config['SECRET_KEY'] = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    app.config['CURRENCY_SYMBOL'] = os.getenv('CURRENCY_SYMBOL', 'R$')

    app.config['BABEL_DEFAULT_LOCALE'] = 'pt_BR'
    app.config['BABEL_SUPPORTED_LOCALES'] = ['pt_BR', 'en']

    app.config['MAX_CONTENT_LENGTH'] = 16 * 1024 * 1024  # 16MB max upload size

    # Delivery platform credentials, only needed by the iFood proxy
    app.config['IFOOD_CLIENT_ID'] = os.getenv('IFOOD_CLIENT_ID')
    app.config['IFOOD_CLIENT_SECRET'] = os.getenv('IFOOD_CLIENT_SECRET')
    app.config['IFOOD_BASE_URL'] = os.getenv('IFOOD_BASE_URL', 'https://merchant-api.ifood.com.br')
    app.config['IFOOD_TIMEOUT'] = float(os.getenv('IFOOD_TIMEOUT', '30'))

    app.config['LOG_LEVEL'] = os.getenv('LOG_LEVEL', 'INFO')

    if test_config:
        app.config.update(test_config)

    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    Babel(app, locale_selector=get_locale)

    # Initialize database
    db.init_app(app)

    # ----------------------------
    # Error handlers
    # ----------------------------
    @app.errorhandler(ValidationError)
    def handle_validation_error(e):
        body = {'error': e.message}
        if e.field:
            body['field'] = e.field
        return jsonify(body), 400

    @app.errorhandler(404)
    def handle_not_found(e):
        return jsonify({'error': _('Not found')}), 404

    @app.errorhandler(405)
    def handle_method_not_allowed(e):
        return jsonify({'error': _('Method not allowed')}), 405

    @app.errorhandler(IfoodError)
    def handle_ifood_error(e):
        logger.warning(f"iFood proxy error: {e.message}")
        return jsonify({'error': e.message, 'details': e.details}), e.status_code or 500

    # Register blueprints
    from .routes import (clients_blueprint, raw_materials_blueprint, products_blueprint, expenses_blueprint,
                         labor_blueprint, sales_blueprint, reports_blueprint, integrations_blueprint)
    app.register_blueprint(clients_blueprint)
    app.register_blueprint(raw_materials_blueprint)
    app.register_blueprint(products_blueprint)
    app.register_blueprint(expenses_blueprint)
    app.register_blueprint(labor_blueprint)
    app.register_blueprint(sales_blueprint)
    app.register_blueprint(reports_blueprint)
    app.register_blueprint(integrations_blueprint)

    with app.app_context():
        db.create_all()

    return app
