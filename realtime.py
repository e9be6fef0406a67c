"""
Change notifications for the weighment tables.

Every committed insert/update is published to subscribers of its table. A
notification is only a trigger: subscribers re-read storage instead of
trusting what the event carries, so duplicate delivery is harmless.

Terminals keep a PendingTareWorklist, a local read cache of the
``pending_tare`` transactions. It is filled once when opened and replaced
wholesale after every change on ``weighment_transactions``, never patched.
"""

import enum
import itertools
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import event, inspect, select
from sqlalchemy.orm import Session, selectinload, sessionmaker

import schemas
from models import TransactionStatus, WeighmentTransaction

logger = logging.getLogger(__name__)

_PENDING_KEY = "realtime_changes"


class ChangeType(str, enum.Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    type: ChangeType
    record_id: Any = None


def note_change(session: Session, table: str, change_type: ChangeType, record_id: Any = None) -> None:
    """Queue a change made outside the unit of work (e.g. a Core UPDATE); published on commit."""
    session.info.setdefault(_PENDING_KEY, []).append(ChangeEvent(table, change_type, record_id))


class Subscription:
    def __init__(self, feed: "ChangeFeed", table: str, callback: Callable[[ChangeEvent], None]):
        self.feed = feed
        self.table = table
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.feed._remove(self)
            self.active = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.unsubscribe()


class ChangeFeed:
    """
    In-process pub/sub fed by SQLAlchemy session events.

    Only commits made through sessions of this process are seen, so every
    terminal must talk to one service process. With ``dispatch_workers`` > 0
    callbacks run on a small thread pool instead of the committing thread,
    and the writer does not wait for subscribers to re-fetch.
    """

    def __init__(self, dispatch_workers: int = 0):
        self._lock = threading.Lock()
        self._subscriptions: Dict[str, List[Subscription]] = {}
        self._executor: Optional[ThreadPoolExecutor] = None
        if dispatch_workers > 0:
            self._executor = ThreadPoolExecutor(max_workers=dispatch_workers, thread_name_prefix="change-feed")

    # ---------- session wiring ----------
    def attach(self, session_factory: sessionmaker) -> None:
        event.listen(session_factory, "after_flush", self._collect)
        event.listen(session_factory, "after_commit", self._publish_committed)
        event.listen(session_factory, "after_rollback", self._discard)

    def detach(self, session_factory: sessionmaker) -> None:
        event.remove(session_factory, "after_flush", self._collect)
        event.remove(session_factory, "after_commit", self._publish_committed)
        event.remove(session_factory, "after_rollback", self._discard)

    @staticmethod
    def _collect(session: Session, flush_context) -> None:
        for objs, change_type in (
            (session.new, ChangeType.INSERT),
            (session.dirty, ChangeType.UPDATE),
            (session.deleted, ChangeType.DELETE),
        ):
            for obj in objs:
                if change_type is ChangeType.UPDATE and not session.is_modified(obj):
                    continue
                mapper = inspect(obj).mapper
                pk = mapper.primary_key_from_instance(obj)
                note_change(session, mapper.local_table.name, change_type, pk[0] if len(pk) == 1 else tuple(pk))

    def _publish_committed(self, session: Session) -> None:
        for ev in session.info.pop(_PENDING_KEY, []):
            self.publish(ev)

    @staticmethod
    def _discard(session: Session) -> None:
        session.info.pop(_PENDING_KEY, None)

    # ---------- pub/sub ----------
    def subscribe(self, table: str, callback: Callable[[ChangeEvent], None]) -> Subscription:
        sub = Subscription(self, table, callback)
        with self._lock:
            self._subscriptions.setdefault(table, []).append(sub)
        logger.debug(f"subscribed to {table} ({self.subscriber_count(table)} active)")
        return sub

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subscriptions.get(sub.table, [])
            if sub in subs:
                subs.remove(sub)
        logger.debug(f"unsubscribed from {sub.table}")

    def subscriber_count(self, table: str) -> int:
        with self._lock:
            return len(self._subscriptions.get(table, []))

    def publish(self, ev: ChangeEvent) -> None:
        with self._lock:
            subs = list(self._subscriptions.get(ev.table, []))
        for sub in subs:
            if self._executor is not None:
                self._executor.submit(self._deliver, sub, ev)
            else:
                self._deliver(sub, ev)

    @staticmethod
    def _deliver(sub: Subscription, ev: ChangeEvent) -> None:
        if not sub.active:
            return
        try:
            sub.callback(ev)
        except Exception:
            # one broken terminal must not fail the writer's commit
            logger.exception(f"subscriber failed handling {ev}")

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)


def fetch_pending(db: Session) -> List["schemas.PendingItem"]:
    """Current pending-tare worklist, newest gross weigh first."""
    rows = db.scalars(
        select(WeighmentTransaction)
        .options(selectinload(WeighmentTransaction.farmer), selectinload(WeighmentTransaction.vehicle))
        .where(WeighmentTransaction.status == TransactionStatus.PENDING_TARE)
        .order_by(WeighmentTransaction.gross_datetime.desc(), WeighmentTransaction.id.desc())
    ).all()
    return [schemas.PendingItem.from_row(r) for r in rows]


class PendingTareWorklist:
    """Terminal-local cache of the pending-tare transactions, newest first."""

    TABLE = "weighment_transactions"

    def __init__(
        self,
        feed: ChangeFeed,
        session_factory: Callable[[], Session],
        on_change: Optional[Callable[[list], None]] = None,
    ):
        self.feed = feed
        self.session_factory = session_factory
        self.on_change = on_change
        self._items: list = []
        self._lock = threading.Lock()
        self._subscription: Optional[Subscription] = None
        self._seq = itertools.count(1)
        self._applied_seq = 0

    @property
    def items(self) -> list:
        with self._lock:
            return list(self._items)

    @property
    def is_open(self) -> bool:
        return self._subscription is not None

    def open(self) -> "PendingTareWorklist":
        if self._subscription is None:
            self._subscription = self.feed.subscribe(self.TABLE, self._on_event)
            self.refresh()
        return self

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def _on_event(self, ev: ChangeEvent) -> None:
        self.refresh()

    def refresh(self) -> list:
        """
        Re-read the worklist from storage.

        Refreshes triggered by concurrent commits may finish out of order. Each
        one is numbered before it reads, and a result older than the one
        already applied is dropped, so the newest read always wins.
        """
        with self._lock:
            seq = next(self._seq)
        with self.session_factory() as db:
            items = fetch_pending(db)
        with self._lock:
            if seq < self._applied_seq:
                logger.debug(f"dropping stale worklist refresh #{seq} (have #{self._applied_seq})")
                return list(self._items)
            self._applied_seq = seq
            self._items = items
            # notify under the lock so listeners see updates in applied order
            if self.on_change is not None:
                self.on_change(list(items))
        return items

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()
