"""
Change signals for grievance rows.

Every flush records which grievances were inserted, changed or deleted,
with a plain-dict snapshot of the row before and after the write. Once the
surrounding transaction commits, the recorded changes are sent as blinker
signals with the current Flask app as sender:

    grievance_created(app, after=...)
    grievance_updated(app, before=..., after=...)
    grievance_deleted(app, before=...)

A rollback discards whatever was recorded, so receivers only ever see
writes that actually landed.
"""
import logging

from blinker import Namespace
from flask import current_app, has_app_context
from sqlalchemy import event, inspect

from extensions import db
from grievances.models import Grievance

logger = logging.getLogger(__name__)

_signals = Namespace()

grievance_created = _signals.signal("grievance-created")
grievance_updated = _signals.signal("grievance-updated")
grievance_deleted = _signals.signal("grievance-deleted")

_PENDING_KEY = "grievance_changes"
_TRACKED_FIELDS = ("title", "details", "category", "severity", "status", "owner_id", "updates")


def snapshot_before(grievance):
    """Row as it was before the pending flush, built from attribute history."""
    state = inspect(grievance)
    before = grievance.to_dict()
    for key in _TRACKED_FIELDS:
        hist = state.attrs[key].history
        if hist.deleted:
            before[key] = hist.deleted[0]
    before["updates"] = list(before["updates"] or [])
    return before


@event.listens_for(db.session, "after_flush")
def _record_changes(session, flush_context):
    pending = session.info.setdefault(_PENDING_KEY, [])

    for obj in session.new:
        if isinstance(obj, Grievance):
            pending.append(("created", None, obj.to_dict()))

    for obj in session.dirty:
        if isinstance(obj, Grievance) and session.is_modified(obj, include_collections=False):
            pending.append(("updated", snapshot_before(obj), obj.to_dict()))

    for obj in session.deleted:
        if isinstance(obj, Grievance):
            pending.append(("deleted", snapshot_before(obj), None))


@event.listens_for(db.session, "after_rollback")
def _discard_changes(session):
    session.info.pop(_PENDING_KEY, None)


@event.listens_for(db.session, "after_commit")
def _emit_changes(session):
    pending = session.info.pop(_PENDING_KEY, None)
    if not pending:
        return

    sender = current_app._get_current_object() if has_app_context() else None
    for kind, before, after in pending:
        if kind == "created":
            _send(grievance_created, sender, after=after)
        elif kind == "updated":
            _send(grievance_updated, sender, before=before, after=after)
        else:
            _send(grievance_deleted, sender, before=before)


def _send(signal, sender, **kwargs):
    """Like ``signal.send`` but one failing receiver does not starve the rest.

    The write has already committed, so an exception here must not reach
    whoever committed it.
    """
    doc = kwargs.get("after") or kwargs.get("before") or {}
    for receiver in signal.receivers_for(sender):
        try:
            receiver(sender, **kwargs)
        except Exception:
            logger.exception("%s receiver %r failed for grievance %s", signal.name, receiver, doc.get("id"))
