from extensions import db
from datetime import datetime
import pytz

CATEGORIES = ("Attention", "Communication", "Forgetfulness", "Time Management", "Other")
SEVERITIES = ("Low", "Medium", "High")
STATUSES = ("Filed", "Working", "Resolved")


def utcnow():
    return datetime.now(pytz.utc)


class Grievance(db.Model):
    __tablename__ = "grievances"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    details = db.Column(db.Text, default="")
    category = db.Column(db.String(50), nullable=False, default="Attention")
    severity = db.Column(db.String(20), nullable=False, default="Medium")
    status = db.Column(db.String(20), nullable=False, default="Filed")

    # client-generated id or authenticated uid
    owner_id = db.Column(db.String(128), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, index=True)

    # [{"text": ..., "at": iso timestamp}], only ever grows.
    # Always assign a new list so the previous value shows up in attribute history.
    updates = db.Column(db.JSON, nullable=False, default=list)

    def append_update(self, text):
        entry = {"text": text, "at": utcnow().isoformat()}
        self.updates = [*(self.updates or []), entry]
        return entry

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "details": self.details or "",
            "category": self.category,
            "severity": self.severity,
            "status": self.status,
            "owner_id": self.owner_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updates": list(self.updates or []),
        }

    def __repr__(self):
        return f"<Grievance {self.id} {self.status}>"
