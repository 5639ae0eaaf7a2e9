"""
ReliefChain Host Ledger

In-process stand-in for the platform the registry runs on. It provides the
three guarantees the registry relies on:

1. Serialization - one call completes before the next begins (re-entrant lock)
2. Atomicity - a checkpoint is opened before a call and rolled back on any failure
3. Logical clock - a monotonically increasing height, advanced by one for
   every committed call

Every call, committed or rejected, leaves a receipt. Receipts are hash
chained: each one commits to the digest of its predecessor, so rewriting any
historical receipt breaks `verify_chain()`.
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol, Tuple, TypeVar

from reliefchain.core import digest_of
from reliefchain.errors import ErrorCode, RegistryFault, Response
from reliefchain.hardening import AtomicCounter, InvariantChecker
from reliefchain.observability import RegistryLayer, get_correlation_id, get_logger

logger = get_logger("ledger", RegistryLayer.LEDGER)

S = TypeVar("S")
T = TypeVar("T")


class Snapshottable(Protocol[S]):
    """State the ledger can roll back.

    `snapshot` opens a checkpoint before the call. Exactly one of `restore`
    or `commit` closes it.
    """

    def snapshot(self) -> S: ...

    def restore(self, snapshot: S) -> None: ...

    def commit(self, snapshot: S) -> None: ...


# =============================================================================
# LOGICAL CLOCK
# =============================================================================

class LogicalClock:
    """Monotonic block height."""

    def __init__(self, genesis_height: int = 0):
        InvariantChecker.check_non_negative("genesis_height", genesis_height)
        self._height = AtomicCounter(genesis_height)

    def now(self) -> int:
        return self._height.get()

    def tick(self) -> int:
        return self._height.increment()

    def advance(self, blocks: int) -> int:
        """Move the clock forward by `blocks` (used by hosts and tests)."""
        current = self._height.get()
        InvariantChecker.check_monotonic_increase("height", current, current + blocks)
        return self._height.increment(blocks)


# =============================================================================
# RECEIPTS
# =============================================================================

@dataclass
class Receipt:
    """Record of one call against the ledger."""
    sequence: int
    height: int
    caller: str
    operation: str
    ok: bool
    error: Optional[str] = None
    value: Any = None
    correlation_id: str = ""
    previous_digest: Optional[str] = None
    digest: str = ""

    def __post_init__(self):
        if not self.digest:
            self.digest = self.compute_digest()

    def compute_digest(self) -> str:
        """Compute tamper-evident digest."""
        return digest_of({
            "sequence": self.sequence,
            "height": self.height,
            "caller": self.caller,
            "operation": self.operation,
            "ok": self.ok,
            "error": self.error,
            "value": self.value,
            "previous_digest": self.previous_digest,
        })

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence": self.sequence,
            "height": self.height,
            "caller": self.caller,
            "operation": self.operation,
            "ok": self.ok,
            "error": self.error,
            "value": self.value,
            "correlation_id": self.correlation_id,
            "previous_digest": self.previous_digest,
            "digest": self.digest,
        }


# =============================================================================
# LEDGER
# =============================================================================

class Ledger:
    """Serializing, all-or-nothing executor with a logical clock."""

    def __init__(self, genesis_height: Optional[int] = None):
        if genesis_height is None:
            from reliefchain.config import get_config
            genesis_height = get_config().ledger.genesis_height.get()

        self._clock = LogicalClock(genesis_height)
        self._lock = threading.RLock()
        self._receipts: List[Receipt] = []
        self._sequence = AtomicCounter(0)

    @property
    def clock(self) -> LogicalClock:
        return self._clock

    def now(self) -> int:
        return self._clock.now()

    @contextmanager
    def consistent_read(self) -> Iterator[int]:
        """Hold the call lock for a multi-table read; yields the current height."""
        with self._lock:
            yield self._clock.now()

    def execute(
        self,
        caller: str,
        operation: str,
        state: Snapshottable[S],
        body: Callable[[], T],
    ) -> Response[T]:
        """Run `body` as one atomic call on behalf of `caller`.

        A RegistryFault rolls state back and becomes a failed Response. Any
        other exception rolls state back and propagates: the host aborts the
        call rather than reporting a registry error.
        """
        with self._lock:
            height = self._clock.now()
            saved = state.snapshot()
            start = time.monotonic()
            try:
                value = body()
            except RegistryFault as fault:
                state.restore(saved)
                self._append_receipt(caller, operation, height, ok=False, error=fault.code)
                logger.operation(
                    operation,
                    (time.monotonic() - start) * 1000,
                    success=False,
                    error_code=fault.code.name,
                    caller=caller,
                    height=height,
                    detail=fault.detail,
                )
                return Response.failure(fault.code)
            except Exception:
                state.restore(saved)
                logger.error(
                    f"Operation {operation} aborted",
                    operation=operation,
                    exc_info=True,
                    caller=caller,
                    height=height,
                )
                raise

            state.commit(saved)
            self._clock.tick()
            self._append_receipt(caller, operation, height, ok=True, value=value)
            logger.operation(
                operation,
                (time.monotonic() - start) * 1000,
                success=True,
                caller=caller,
                height=height,
            )
            return Response.success(value)

    def _append_receipt(
        self,
        caller: str,
        operation: str,
        height: int,
        ok: bool,
        error: Optional[ErrorCode] = None,
        value: Any = None,
    ) -> Receipt:
        previous = self._receipts[-1].digest if self._receipts else None
        receipt = Receipt(
            sequence=self._sequence.increment(),
            height=height,
            caller=caller,
            operation=operation,
            ok=ok,
            error=error.name if error is not None else None,
            value=value,
            correlation_id=get_correlation_id(),
            previous_digest=previous,
        )
        self._receipts.append(receipt)
        return receipt

    def receipts(
        self,
        caller: Optional[str] = None,
        operation: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Receipt]:
        """Query receipts, oldest first."""
        with self._lock:
            out = list(self._receipts)

        if caller is not None:
            out = [r for r in out if r.caller == caller]
        if operation is not None:
            out = [r for r in out if r.operation == operation]
        if limit is not None:
            out = out[-limit:]
        return out

    @property
    def last_receipt(self) -> Optional[Receipt]:
        with self._lock:
            return self._receipts[-1] if self._receipts else None

    def verify_chain(self) -> Tuple[bool, Optional[int]]:
        """
        Verify receipt chain integrity.

        Returns (valid, first_invalid_index).
        """
        with self._lock:
            for i, receipt in enumerate(self._receipts):
                if receipt.compute_digest() != receipt.digest:
                    return (False, i)
                if i > 0 and receipt.previous_digest != self._receipts[i - 1].digest:
                    return (False, i)
            return (True, None)
