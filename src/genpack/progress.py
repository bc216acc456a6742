"""Progress notification for generation sessions.

A ``ProgressNotifier`` is constructed by the host and passed to the session
and its collaborators. Subscribers receive advisory ``ProgressEvent`` objects
(status lines, character counts, retry notices). Nothing in the control loop
reads these events back, so a slow or broken subscriber cannot change how a
session behaves.

Example:
    >>> notifier = ProgressNotifier()
    >>> sub_id = notifier.subscribe(lambda e: print(e.message), kinds={ProgressKind.STATUS})
    >>> notifier.status("Generating... 3/8 files")
    >>> notifier.unsubscribe(sub_id)
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Deque, Dict, FrozenSet, Iterable, List, Optional

logger = logging.getLogger(__name__)


class ProgressKind(str, Enum):
    STATUS = "status"
    CHARS_RECEIVED = "chars_received"
    BATCH_STARTED = "batch_started"
    RETRY_SCHEDULED = "retry_scheduled"
    TARGETED_FETCH = "targeted_fetch"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class ProgressEvent:
    kind: ProgressKind
    message: str = ""
    chars: Optional[int] = None
    batch: Optional[int] = None
    attempt: Optional[int] = None
    delay_ms: Optional[int] = None
    session_id: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


ProgressHandler = Callable[[ProgressEvent], None]


@dataclass
class _Subscription:
    handler: ProgressHandler
    kinds: Optional[FrozenSet[ProgressKind]]
    subscription_id: str
    invocation_count: int = 0

    def matches(self, event: ProgressEvent) -> bool:
        return self.kinds is None or event.kind in self.kinds


class ProgressNotifier:
    """Explicit publish/subscribe channel for session progress.

    Attributes:
        _subscriptions: Map of subscription ID to subscription
        _history: Most recent events, newest last
    """

    def __init__(self, max_history: int = 200) -> None:
        self._subscriptions: Dict[str, _Subscription] = {}
        self._history: Deque[ProgressEvent] = deque(maxlen=max_history)
        self._subscription_counter = 0

    def subscribe(
        self,
        handler: ProgressHandler,
        kinds: Optional[Iterable[ProgressKind]] = None,
    ) -> str:
        """Register a handler.

        Args:
            handler: Callable invoked with each matching event
            kinds: Event kinds to receive; None receives everything

        Returns:
            Subscription ID for unsubscribe()

        Raises:
            ValueError: If handler is not callable
        """
        if not callable(handler):
            raise ValueError("Handler must be callable")

        self._subscription_counter += 1
        subscription_id = f"progress_{self._subscription_counter}"
        self._subscriptions[subscription_id] = _Subscription(
            handler=handler,
            kinds=frozenset(kinds) if kinds is not None else None,
            subscription_id=subscription_id,
        )
        logger.debug(
            f"[Progress] Subscription {subscription_id} registered "
            f"(total: {len(self._subscriptions)})"
        )
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a handler. Returns False if the ID was unknown."""
        if subscription_id in self._subscriptions:
            del self._subscriptions[subscription_id]
            logger.debug(f"[Progress] Subscription {subscription_id} removed")
            return True
        return False

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, event: ProgressEvent) -> int:
        """Deliver an event to every matching subscriber.

        Handler exceptions are logged and skipped so one subscriber cannot
        block the others.

        Returns:
            Number of handlers successfully invoked
        """
        self._history.append(event)
        invoked = 0
        for subscription in list(self._subscriptions.values()):
            if not subscription.matches(event):
                continue
            try:
                subscription.handler(event)
                subscription.invocation_count += 1
                invoked += 1
            except Exception as e:
                logger.warning(
                    f"[Progress] Handler {subscription.subscription_id} failed "
                    f"for {event.kind.value}: {e}"
                )
        return invoked

    def emit(self, kind: ProgressKind, message: str = "", **fields) -> int:
        return self.publish(ProgressEvent(kind=kind, message=message, **fields))

    def status(self, message: str, **fields) -> int:
        return self.emit(ProgressKind.STATUS, message, **fields)

    def history(self, kind: Optional[ProgressKind] = None) -> List[ProgressEvent]:
        """Recorded events, oldest first, optionally filtered by kind."""
        events = list(self._history)
        if kind is not None:
            events = [e for e in events if e.kind == kind]
        return events
