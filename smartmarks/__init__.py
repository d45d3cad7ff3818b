from flask import Flask

from smartmarks.api import api_bp
from smartmarks.auth import auth_bp
from smartmarks.config import Config
from smartmarks.extensions import db, login_manager
from smartmarks.web import web_bp


APP_NAME = "Smart Bookmarks"


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)
    app.logger.setLevel(app.config["LOG_LEVEL"])

    db.init_app(app)
    login_manager.init_app(app)

    app.register_blueprint(auth_bp)
    app.register_blueprint(web_bp)
    app.register_blueprint(api_bp)

    @app.cli.command("init-db")
    def init_db_command():
        db.create_all()
        print("Initialized smartmarks database.")

    @app.context_processor
    def inject_globals():
        return {
            "app_name": APP_NAME,
            "oauth_provider": app.config["OAUTH_PROVIDER"],
        }

    with app.app_context():
        db.create_all()

    return app
