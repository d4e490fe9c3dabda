from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from extensions import db
from notifications.models import FcmToken, MailMessage


class Outbox:
    """Store access for the notification handlers.

    Handlers run right after a grievance transaction has committed, when the
    request session can no longer emit SQL, so every call here opens its own
    short-lived session on the app's engine.
    """

    @property
    def engine(self):
        return db.engine

    def enqueue_mail(self, to, subject, html, sender=None):
        with Session(self.engine) as session:
            row = MailMessage(to=list(to), subject=subject, html=html, sender=sender or None)
            session.add(row)
            session.flush()
            mail_id = row.id
            session.commit()
            return mail_id

    def tokens_for(self, uid):
        with Session(self.engine) as session:
            rows = session.scalars(
                select(FcmToken.token).where(FcmToken.uid == uid).order_by(FcmToken.created_at)
            )
            return list(rows)

    def remove_tokens(self, tokens):
        if not tokens:
            return 0
        with Session(self.engine) as session:
            result = session.execute(delete(FcmToken).where(FcmToken.token.in_(list(tokens))))
            session.commit()
            return result.rowcount
