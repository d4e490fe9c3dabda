import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

CHANNELS = ("email", "push")
TRIGGERS = ("status", "updates")


def _normalize_database_url(url):
    # Render/Heroku hand out postgres:// which SQLAlchemy expects as postgresql://
    if url and url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


class Config:
    BASE_DIR = os.path.abspath(os.path.dirname(__file__))
    SECRET_KEY = os.getenv("SECRET_KEY", "change-me")

    # --- DATABASE ---
    _default_sqlite_path = os.path.join(BASE_DIR, "instance", "grievances.db").replace("\\", "/")
    SQLALCHEMY_DATABASE_URI = _normalize_database_url(
        os.getenv("DB_URL") or os.getenv("DATABASE_URL") or f"sqlite:///{_default_sqlite_path}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # --- EMAIL (drained by `flask mail drain`) ---
    MAIL_SERVER = os.getenv("MAIL_SERVER", "localhost")
    MAIL_PORT = int(os.getenv("MAIL_PORT", 465))
    MAIL_USE_SSL = os.getenv("MAIL_USE_SSL", "True") == "True"
    MAIL_USE_TLS = os.getenv("MAIL_USE_TLS", "False") == "True"
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASS")
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER")

    # --- NOTIFICATIONS ---
    GRIEVANCE_ADMIN_EMAIL = os.getenv("GRIEVANCE_ADMIN_EMAIL", "")
    GRIEVANCE_ADMIN_UID = os.getenv("GRIEVANCE_ADMIN_UID", "")
    GRIEVANCE_USER_EMAIL = os.getenv("GRIEVANCE_USER_EMAIL", "")
    GRIEVANCE_MAIL_SENDER = os.getenv("GRIEVANCE_MAIL_SENDER", "")
    GRIEVANCE_CHANNEL = os.getenv("GRIEVANCE_CHANNEL", "email")
    GRIEVANCE_NOTIFY_ON = os.getenv("GRIEVANCE_NOTIFY_ON", "status")
    GRIEVANCE_CLICK_TARGET = os.getenv("GRIEVANCE_CLICK_TARGET", "/")
    GRIEVANCE_ICON = os.getenv("GRIEVANCE_ICON", "/icons/icon-192.png")
    FIREBASE_CREDENTIALS = os.getenv("FIREBASE_CREDENTIALS")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


@dataclass(frozen=True)
class NotifierConfig:
    """Who gets notified, over which channel, and on what kind of change.

    Read once from the Flask config in ``create_app`` and handed to the
    notifier; nothing downstream reads the environment.
    """

    admin_email: str = ""
    admin_uid: str = ""
    user_email: str = ""
    mail_sender: str = ""
    channel: str = "email"
    notify_on: str = "status"
    click_target: str = "/"
    icon: str = "/icons/icon-192.png"

    def __post_init__(self):
        if self.channel not in CHANNELS:
            raise ValueError(f"Unknown notification channel {self.channel!r}, expected one of {CHANNELS}")
        if self.notify_on not in TRIGGERS:
            raise ValueError(f"Unknown trigger {self.notify_on!r}, expected one of {TRIGGERS}")

    @classmethod
    def from_mapping(cls, cfg):
        return cls(
            admin_email=(cfg.get("GRIEVANCE_ADMIN_EMAIL") or "").strip(),
            admin_uid=(cfg.get("GRIEVANCE_ADMIN_UID") or "").strip(),
            user_email=(cfg.get("GRIEVANCE_USER_EMAIL") or "").strip(),
            mail_sender=(cfg.get("GRIEVANCE_MAIL_SENDER") or "").strip(),
            channel=(cfg.get("GRIEVANCE_CHANNEL") or "email").strip().lower(),
            notify_on=(cfg.get("GRIEVANCE_NOTIFY_ON") or "status").strip().lower(),
            click_target=cfg.get("GRIEVANCE_CLICK_TARGET") or "/",
            icon=cfg.get("GRIEVANCE_ICON") or "/icons/icon-192.png",
        )
