"""Observer registries for wallet events."""
import itertools
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Generic, List, Optional, TypeVar

from .zones import Zone
from ..utils.console import print_warn

T = TypeVar("T")


@dataclass(frozen=True)
class PaymentReceived:
    amount: int                       # qits
    tx_hash: str
    zone: Zone
    output_index: int
    address: str
    block_number: Optional[int]
    timestamp: float
    sender_payment_code: Optional[str] = None


class Subscription:
    """Handle returned by ``subscribe``; call it (or ``unsubscribe``) to stop delivery."""

    def __init__(self, registry: "SubscriptionRegistry", token: int):
        self._registry = registry
        self.token = token

    def unsubscribe(self) -> bool:
        return self._registry._remove(self.token)

    def __call__(self) -> bool:
        return self.unsubscribe()

    @property
    def active(self) -> bool:
        return self._registry._has(self.token)


class SubscriptionRegistry(Generic[T]):
    """Ordered callbacks with stable identity for removal.

    Emission calls every callback in subscription order; an exception from
    one callback is logged and does not reach the others or the emitter.
    """

    def __init__(self, name: str):
        self.name = name
        self._callbacks: "OrderedDict[int, Callable[[T], object]]" = OrderedDict()
        self._tokens = itertools.count(1)
        self._lock = threading.Lock()
        self.failures = 0

    def subscribe(self, callback: Callable[[T], object]) -> Subscription:
        with self._lock:
            token = next(self._tokens)
            self._callbacks[token] = callback
        return Subscription(self, token)

    def _remove(self, token: int) -> bool:
        with self._lock:
            return self._callbacks.pop(token, None) is not None

    def _has(self, token: int) -> bool:
        with self._lock:
            return token in self._callbacks

    def __len__(self) -> int:
        with self._lock:
            return len(self._callbacks)

    def emit(self, event: T) -> int:
        """Deliver ``event``; returns how many callbacks raised."""
        with self._lock:
            callbacks: List[Callable[[T], object]] = list(self._callbacks.values())
        failed = 0
        for callback in callbacks:
            try:
                callback(event)
            except Exception as e:
                failed += 1
                print_warn(f"⚠️  {self.name} callback error: {e}")
        self.failures += failed
        return failed
