from flask import Flask, jsonify
from logging.config import dictConfig
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
import logging
import os

from config import Config, NotifierConfig
from extensions import db, mail
from grievances.live import LiveQueryHub
from notifications.notifier import Notifier
from notifications.outbox import Outbox
from notifications.push import FirebasePushClient

# Blueprint Imports
from grievances.routes import grievances_bp, admin_bp
from notifications.routes import notifications_bp

logger = logging.getLogger(__name__)


def configure_logging(level):
    dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {"format": "[%(asctime)s] %(levelname)s in %(name)s: %(message)s"},
        },
        "handlers": {
            "wsgi": {
                "class": "logging.StreamHandler",
                "stream": "ext://flask.logging.wsgi_errors_stream",
                "formatter": "default",
            },
        },
        "root": {"level": level, "handlers": ["wsgi"]},
    })


def _make_push_client(app, notifier_config):
    if notifier_config.channel != "push":
        return None
    path = app.config.get("FIREBASE_CREDENTIALS")
    if not path:
        logger.warning("GRIEVANCE_CHANNEL is push but FIREBASE_CREDENTIALS is not set; push is disabled")
        return None
    return FirebasePushClient.from_credentials(path)


def create_app(config_object=Config, push_client=None):
    configure_logging(getattr(config_object, "LOG_LEVEL", "INFO"))

    app = Flask(__name__)
    app.config.from_object(config_object)

    uri = app.config.get("SQLALCHEMY_DATABASE_URI") or ""
    if uri.startswith("sqlite:///") and uri != "sqlite:///:memory:":
        os.makedirs(os.path.dirname(uri[len("sqlite:///"):]) or ".", exist_ok=True)

    # Initialize Extensions
    db.init_app(app)
    mail.init_app(app)

    # --- NOTIFICATION FAN-OUT ---
    notifier_config = NotifierConfig.from_mapping(app.config)
    if push_client is None:
        push_client = _make_push_client(app, notifier_config)
    notifier = Notifier(notifier_config, Outbox(), push_client=push_client)
    notifier.connect(app)

    hub = LiveQueryHub()
    hub.connect(app)

    app.extensions["notifier"] = notifier
    app.extensions["live_queries"] = hub
    app.extensions["push_client"] = push_client

    # --- REGISTER ALL BLUEPRINTS ---
    app.register_blueprint(grievances_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(notifications_bp)

    @app.route("/health")
    def health():
        db_state = "ok"
        try:
            db.session.execute(text("SELECT 1"))
        except SQLAlchemyError:
            db_state = "fail"
        return jsonify({
            "ok": True,
            "service": "grievance-portal",
            "channel": notifier_config.channel,
            "notify_on": notifier_config.notify_on,
            "db": db_state,
        })

    @app.cli.command("init-db")
    def init_db():
        """Create the grievance, token and mail tables."""
        db.create_all()
        print("Database tables created ✅")

    logger.info(
        "Grievance notifications via %s on %s changes",
        notifier_config.channel,
        notifier_config.notify_on,
    )
    return app


if __name__ == "__main__":
    # Ensure debug is off for production stability
    create_app().run(debug=False)
