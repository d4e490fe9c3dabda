"""
Web push delivery through Firebase Cloud Messaging.

The Firebase app is created explicitly under its own name and handed
around as part of :class:`FirebasePushClient`; nothing touches the
firebase_admin default app.
"""
import logging
from dataclasses import dataclass

import firebase_admin
from firebase_admin import credentials, messaging

logger = logging.getLogger(__name__)

FIREBASE_APP_NAME = "grievance-portal"
MAX_BATCH = 500


@dataclass(frozen=True)
class PushPayload:
    title: str
    body: str
    click_target: str = "/"
    icon: str = ""


@dataclass(frozen=True)
class SendResult:
    token: str
    success: bool
    error: Exception = None


def is_unregistered(error):
    """True when FCM says the token no longer belongs to any device."""
    return isinstance(error, messaging.UnregisteredError)


class FirebasePushClient:
    def __init__(self, firebase_app):
        self.firebase_app = firebase_app

    @classmethod
    def from_credentials(cls, path, name=FIREBASE_APP_NAME):
        try:
            fb_app = firebase_admin.get_app(name)
        except ValueError:
            fb_app = firebase_admin.initialize_app(credentials.Certificate(path), name=name)
        return cls(fb_app)

    def build_message(self, token, payload):
        link = payload.click_target or ""
        # FCM rejects non-https links; relative targets still reach the service worker via data
        fcm_options = messaging.WebpushFCMOptions(link=link) if link.lower().startswith("https://") else None
        return messaging.Message(
            token=token,
            notification=messaging.Notification(title=payload.title, body=payload.body),
            data={"click_target": link} if link else None,
            webpush=messaging.WebpushConfig(
                notification=messaging.WebpushNotification(
                    title=payload.title,
                    body=payload.body,
                    icon=payload.icon or None,
                ),
                fcm_options=fcm_options,
            ),
        )

    def send(self, tokens, payload):
        """Send one payload to every token; one :class:`SendResult` per token, in order.

        FCM takes at most ``MAX_BATCH`` messages per call, so longer token
        lists go out in several batches.
        """
        tokens = list(tokens)
        results = []
        for start in range(0, len(tokens), MAX_BATCH):
            chunk = tokens[start:start + MAX_BATCH]
            messages = [self.build_message(token, payload) for token in chunk]
            batch = messaging.send_each(messages, app=self.firebase_app)
            logger.info("Push sent: %d ok, %d failed", batch.success_count, batch.failure_count)
            results.extend(
                SendResult(token=token, success=resp.success, error=resp.exception)
                for token, resp in zip(chunk, batch.responses)
            )
        return results
