from extensions import db
from grievances.models import utcnow


# =========================
# PUSH TOKEN MODEL
# =========================
class FcmToken(db.Model):
    __tablename__ = "fcm_tokens"

    # the device/browser token itself is the key
    token = db.Column(db.String(512), primary_key=True)
    uid = db.Column(db.String(128), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    def __repr__(self):
        return f"<FcmToken uid={self.uid}>"


# =========================
# OUTBOUND MAIL QUEUE
# =========================
class MailMessage(db.Model):
    __tablename__ = "mail"

    id = db.Column(db.Integer, primary_key=True)
    to = db.Column(db.JSON, nullable=False)  # list of addresses
    sender = db.Column(db.String(120))
    subject = db.Column(db.String(255), nullable=False)
    html = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, index=True)

    def to_dict(self):
        return {
            "id": self.id,
            "to": list(self.to or []),
            "from": self.sender,
            "subject": self.subject,
            "html": self.html,
        }

    def __repr__(self):
        return f"<MailMessage {self.id} to={self.to}>"
