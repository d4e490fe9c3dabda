import logging

from flask_mail import Message
from sqlalchemy.exc import SQLAlchemyError

from extensions import db, mail
from notifications.models import MailMessage

logger = logging.getLogger(__name__)


def build_message(row):
    return Message(
        subject=row.subject,
        recipients=list(row.to or []),
        html=row.html,
        sender=row.sender or None,
    )


def drain_mail_queue(limit=None):
    """Send queued mail rows oldest first, deleting each one that went out.

    A row that fails to send stays in the queue and is logged; nothing is
    retried here. Returns ``(sent, failed)``.
    """
    query = MailMessage.query.order_by(MailMessage.created_at, MailMessage.id)
    if limit:
        query = query.limit(limit)

    sent = failed = 0
    for row in query.all():
        try:
            mail.send(build_message(row))
        except Exception as e:
            logger.error("Could not send mail %s to %s: %s", row.id, ", ".join(row.to or []), e)
            failed += 1
            continue

        try:
            db.session.delete(row)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Mail %s was sent but could not be removed from the queue", row.id)
        sent += 1
    return sent, failed
