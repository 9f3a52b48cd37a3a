import logging
import traceback

import click
from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from config import Config
from extensions import db, login_manager, migrate, oauth
from models import User
from auth_gate import init_auth_gate
from session_store import SessionStore
from google_calendar import GoogleCalendarClient


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    # Set up logging
    logging.basicConfig(level=app.config.get('LOG_LEVEL', logging.INFO))
    logger = logging.getLogger(__name__)

    # Log database connection info (without exposing sensitive data)
    logger.info(f"Database type: {app.config['SQLALCHEMY_DATABASE_URI'].split('://')[0]}")
    logger.info(f"Google OAuth configured: {bool(app.config.get('GOOGLE_CLIENT_ID'))}")

    db.init_app(app)
    migrate.init_app(app, db)
    oauth.init_app(app)

    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, user_id)

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Unauthorized'}), 401

    SessionStore(app)
    app.extensions['calendar_client'] = GoogleCalendarClient.from_config(app.config)
    init_auth_gate(app)

    # Register blueprints here
    from auth import auth as auth_blueprint
    app.register_blueprint(auth_blueprint)

    from main import main as main_blueprint
    app.register_blueprint(main_blueprint)

    from calendar_routes import calendar as calendar_blueprint
    app.register_blueprint(calendar_blueprint)

    # Global error handlers to return JSON instead of HTML
    @app.errorhandler(400)
    def bad_request_error(error):
        return jsonify({'error': 'Bad request', 'details': str(error)}), 400

    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({'error': 'Not found', 'details': str(error)}), 404

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        logger.error(f"500 error on {request.path}: {str(error)}")
        return jsonify({
            'error': 'Internal server error',
            'message': str(error),
            'path': request.path
        }), 500

    @app.errorhandler(Exception)
    def handle_exception(e):
        if isinstance(e, HTTPException):
            return jsonify({
                'error': e.description,
                'type': type(e).__name__,
                'path': request.path
            }), e.code

        logger.error(f"Unhandled exception on {request.path}: {str(e)}\n{traceback.format_exc()}")
        db.session.rollback()
        return jsonify({
            'error': 'Internal server error',
            'type': type(e).__name__,
            'path': request.path
        }), 500

    @app.cli.command('seed-holidays')
    @click.argument('year', type=int)
    def seed_holidays_command(year):
        """Load the statutory holidays of YEAR."""
        from seeder import seed_holidays
        seed_holidays(year)

    with app.app_context():
        db.create_all()

    return app


if __name__ == '__main__':
    import os
    app = create_app()
    debug_mode = os.environ.get('FLASK_DEBUG') == '1'
    app.run(host='0.0.0.0', port=int(os.environ.get('PORT', 5000)), debug=debug_mode)
