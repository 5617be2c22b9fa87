"""Cancellation and deadline handling for a single reconcile."""

import threading
import time
from typing import Any, Dict, List, Optional

from .errors import ReconcileCancelled
from .store import ObjectStore


class ReconcileContext:
    """Cancellation event plus an optional absolute deadline (monotonic)."""

    def __init__(self, cancelled: Optional[threading.Event] = None, timeout: Optional[float] = None):
        self.cancelled = cancelled if cancelled is not None else threading.Event()
        self.deadline = time.monotonic() + timeout if timeout is not None else None

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()

    def check(self) -> None:
        if self.cancelled.is_set():
            raise ReconcileCancelled("reconcile cancelled")
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise ReconcileCancelled("reconcile deadline exceeded")

    def sleep(self, seconds: float) -> None:
        """Backoff sleep that wakes up early on cancellation."""
        self.check()
        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, max(remaining, 0))
        self.cancelled.wait(seconds)
        self.check()

    def bind(self, store: ObjectStore) -> "ContextStore":
        return ContextStore(store, self)


class ContextStore(ObjectStore):
    """Checks the context before every round-trip to the wrapped store."""

    def __init__(self, store: ObjectStore, ctx: ReconcileContext):
        self.store = store
        self.ctx = ctx

    def get(self, kind: str, namespace: str, name: str) -> Dict[str, Any]:
        self.ctx.check()
        return self.store.get(kind, namespace, name)

    def list(self, kind: str, namespace: str) -> List[Dict[str, Any]]:
        self.ctx.check()
        return self.store.list(kind, namespace)

    def create(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        self.ctx.check()
        return self.store.create(obj)

    def update(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        self.ctx.check()
        return self.store.update(obj)

    def patch(self, kind: str, namespace: str, name: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        self.ctx.check()
        return self.store.patch(kind, namespace, name, patch)

    def delete(self, kind: str, namespace: str, name: str) -> None:
        self.ctx.check()
        self.store.delete(kind, namespace, name)
