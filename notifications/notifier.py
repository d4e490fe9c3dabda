"""
Grievance notification fan-out.

A :class:`Notifier` is built once per app from a :class:`config.NotifierConfig`
and connected to the grievance change signals of that app only. It decides
whether a write is notifiable, renders the message and hands it to the mail
queue or to push delivery.

Failures never reach the writer of the grievance: a missing recipient, a
failed enqueue or a failed push send is logged and the handler returns None.
"""
import logging
from dataclasses import dataclass, field

from firebase_admin.exceptions import FirebaseError
from markupsafe import escape
from sqlalchemy.exc import SQLAlchemyError

from grievances.signals import grievance_created, grievance_updated
from notifications.push import PushPayload, is_unregistered

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Change:
    kind: str  # "status" or "update"
    text: str


@dataclass
class OutboundNotification:
    recipients: list
    subject: str
    body: str
    html: str = ""
    sender: str = ""
    sent_to: list = field(default_factory=list)


def detect_change(before, after, notify_on):
    """What about this write should be told to the owner, if anything.

    With ``notify_on="updates"`` only a grown ``updates`` list counts and the
    last entry wins, so several entries appended between two observed states
    collapse into one notification.
    """
    if notify_on == "status":
        if after.get("status") != before.get("status"):
            return Change("status", after.get("status") or "")
        return None

    updates_before = before.get("updates") or []
    updates_after = after.get("updates") or []
    if len(updates_after) > len(updates_before):
        return Change("update", (updates_after[-1] or {}).get("text", ""))
    return None


# ================= MESSAGE BODIES =================

def render_created(grievance):
    title = grievance.get("title") or ""
    details = grievance.get("details")
    details_row = f"<li><strong>Details:</strong> {escape(details)}</li>" if details else ""
    html = (
        "<h1>New Grievance Submitted</h1>"
        "<p>A new grievance has been filed by a user.</p>"
        "<ul>"
        f"<li><strong>Title:</strong> {escape(title)}</li>"
        f"<li><strong>Severity:</strong> {escape(grievance.get('severity') or '')}</li>"
        f"<li><strong>Category:</strong> {escape(grievance.get('category') or '')}</li>"
        f"{details_row}"
        "</ul>"
        "<p>You can view and manage this grievance in the admin portal.</p>"
    )
    subject = f"New Grievance Filed: {title}"
    body = f"{grievance.get('severity')} · {grievance.get('category')}: {title}"
    return subject, body, html


def render_change(grievance, change):
    title = grievance.get("title") or ""
    if change.kind == "status":
        subject = f"Status Update for your Grievance: {title}"
        body = f"The new status is: {change.text}"
        html = (
            "<h1>Grievance Status Updated</h1>"
            f"<p>The status of your grievance titled \"<strong>{escape(title)}</strong>\" has been updated.</p>"
            f"<p>The new status is: <strong>{escape(change.text)}</strong></p>"
        )
    else:
        subject = f"New update on your Grievance: {title}"
        body = change.text
        html = (
            "<h1>New Update on your Grievance</h1>"
            f"<p>Your grievance titled \"<strong>{escape(title)}</strong>\" has a new update:</p>"
            f"<blockquote>{escape(change.text)}</blockquote>"
        )
    return subject, body, html


# ================= NOTIFIER =================

class Notifier:
    def __init__(self, config, outbox, push_client=None):
        self.config = config
        self.outbox = outbox
        self.push_client = push_client

    def connect(self, app):
        grievance_created.connect(self.on_created, sender=app)
        grievance_updated.connect(self.on_updated, sender=app)

    # --- trigger handlers ---

    def on_created(self, sender, after=None, **kwargs):
        subject, body, html = render_created(after)
        if self.config.channel == "email":
            recipients = [self.config.admin_email] if self.config.admin_email else []
        else:
            recipients = self._tokens(self.config.admin_uid)
        if not recipients:
            logger.warning("No admin recipient configured; grievance %s filed without notification", after.get("id"))
            return None
        return self._deliver(OutboundNotification(recipients, subject, body, html, self.config.mail_sender))

    def on_updated(self, sender, before=None, after=None, **kwargs):
        change = detect_change(before, after, self.config.notify_on)
        if change is None:
            logger.debug("Grievance %s changed without a notifiable %s change", after.get("id"), self.config.notify_on)
            return None

        subject, body, html = render_change(after, change)
        if self.config.channel == "email":
            recipients = [self.config.user_email] if self.config.user_email else []
        else:
            recipients = self._tokens(after.get("owner_id"))
        if not recipients:
            logger.warning(
                "No recipient for owner %r of grievance %s; skipping notification",
                after.get("owner_id"),
                after.get("id"),
            )
            return None
        return self._deliver(OutboundNotification(recipients, subject, body, html, self.config.mail_sender))

    # --- delivery ---

    def _tokens(self, uid):
        if not uid:
            return []
        try:
            return self.outbox.tokens_for(uid)
        except SQLAlchemyError:
            logger.exception("Could not look up push tokens for uid %s", uid)
            return []

    def _deliver(self, notification):
        if self.config.channel == "email":
            return self._enqueue_mail(notification)
        return self._send_push(notification)

    def _enqueue_mail(self, notification):
        try:
            mail_id = self.outbox.enqueue_mail(
                notification.recipients, notification.subject, notification.html, sender=notification.sender
            )
        except SQLAlchemyError:
            logger.exception("Failed to queue email to %s", ", ".join(notification.recipients))
            return None
        notification.sent_to = list(notification.recipients)
        logger.info("Email %s queued for recipients: %s", mail_id, ", ".join(notification.recipients))
        return notification

    def _send_push(self, notification):
        if self.push_client is None:
            logger.warning("Push channel selected but no push client configured; dropping %r", notification.subject)
            return None

        payload = PushPayload(
            title=notification.subject,
            body=notification.body,
            click_target=self.config.click_target,
            icon=self.config.icon,
        )
        try:
            results = self.push_client.send(notification.recipients, payload)
        except (FirebaseError, ValueError):
            logger.exception("Push send failed for %d token(s)", len(notification.recipients))
            return None

        stale = []
        for result in results:
            if result.success:
                notification.sent_to.append(result.token)
            elif is_unregistered(result.error):
                stale.append(result.token)
            else:
                logger.error("Failure sending notification to %s: %s", result.token, result.error)

        if stale:
            try:
                removed = self.outbox.remove_tokens(stale)
                logger.info("Removed %d unregistered push token(s)", removed)
            except SQLAlchemyError:
                logger.exception("Could not remove unregistered push tokens")
        return notification
