from flask import Flask, jsonify
from werkzeug.exceptions import RequestEntityTooLarge

from shelfmark.api import api_bp
from shelfmark.auth import auth_bp
from shelfmark.config import Config
from shelfmark.extensions import db, login_manager, migrate


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "authentication required"}), 401

    @app.errorhandler(RequestEntityTooLarge)
    def upload_too_large(exc):
        limit = app.config.get("MAX_CONTENT_LENGTH")
        return jsonify({"error": "File too large", "details": f"limit is {limit} bytes"}), 413

    app.register_blueprint(auth_bp)
    app.register_blueprint(api_bp)

    @app.cli.command("init-db")
    def init_db_command():
        db.create_all()
        print("Initialized Shelfmark database.")

    with app.app_context():
        db.create_all()

    return app
