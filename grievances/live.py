"""
Live grievance lists.

``LiveQueryHub.subscribe()`` hands out a :class:`Subscription`: an iterator
of list snapshots that yields the current result straight away and a fresh
one after every committed grievance change that can affect it. Change
signals only nudge the subscription; the query itself runs lazily in
whoever iterates. Call ``unsubscribe()`` (or leave the ``with`` block)
when the consumer goes away, otherwise the hub keeps nudging a dead queue.
"""
import logging
import queue
import threading

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from extensions import db
from grievances.models import Grievance
from grievances.signals import grievance_created, grievance_deleted, grievance_updated

logger = logging.getLogger(__name__)

_CHANGED = object()
_CLOSED = object()


class LiveQueryError(Exception):
    """The backing query failed; shown to the subscriber, never retried."""


def fetch_grievances(owner_id=None):
    stmt = select(Grievance).order_by(Grievance.created_at.desc(), Grievance.id.desc())
    if owner_id is not None:
        stmt = stmt.where(Grievance.owner_id == owner_id)
    try:
        with Session(db.engine) as session:
            return [g.to_dict() for g in session.scalars(stmt)]
    except SQLAlchemyError as e:
        logger.exception("Grievance query failed (owner_id=%r)", owner_id)
        raise LiveQueryError("Could not load grievances.") from e


class Subscription:
    def __init__(self, hub, owner_id=None):
        self.hub = hub
        self.owner_id = owner_id
        self.active = True
        self._queue = queue.Queue()
        self._queue.put(_CHANGED)

    def __repr__(self):
        scope = "admin" if self.owner_id is None else f"owner={self.owner_id}"
        return f"<Subscription {scope} active={self.active}>"

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.unsubscribe()

    def __iter__(self):
        while True:
            snapshot = self.next_snapshot()
            if snapshot is None:
                return
            yield snapshot

    def wants(self, before, after):
        if self.owner_id is None:
            return True
        return any(doc and doc.get("owner_id") == self.owner_id for doc in (before, after))

    def notify(self):
        if self.active:
            self._queue.put(_CHANGED)

    def next_snapshot(self, timeout=None):
        """Block until something changed, then return the fresh result.

        Returns None once unsubscribed, or when ``timeout`` seconds pass
        without a change.
        """
        if not self.active:
            return None
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

        # several nudges queued up while the consumer was busy -> one query
        while item is _CHANGED:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                break
        if item is _CLOSED or not self.active:
            return None
        return self.hub.fetch(self.owner_id)

    def unsubscribe(self):
        if not self.active:
            return
        self.active = False
        self.hub.remove(self)
        self._queue.put(_CLOSED)


class LiveQueryHub:
    def __init__(self, fetch=fetch_grievances):
        self.fetch = fetch
        self._subscriptions = set()
        self._lock = threading.Lock()

    def connect(self, app):
        grievance_created.connect(self._on_change, sender=app)
        grievance_updated.connect(self._on_change, sender=app)
        grievance_deleted.connect(self._on_change, sender=app)

    def subscribe(self, owner_id=None):
        sub = Subscription(self, owner_id)
        with self._lock:
            self._subscriptions.add(sub)
        return sub

    def remove(self, sub):
        with self._lock:
            self._subscriptions.discard(sub)

    @property
    def subscriber_count(self):
        with self._lock:
            return len(self._subscriptions)

    def _on_change(self, sender, before=None, after=None, **kwargs):
        with self._lock:
            subs = list(self._subscriptions)
        for sub in subs:
            if sub.wants(before, after):
                sub.notify()
