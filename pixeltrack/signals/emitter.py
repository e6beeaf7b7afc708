"""Signal emitter — sequencing, optional persistence and fan-out of Signals."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from pixeltrack.signals.types import Signal, SignalType
from pixeltrack.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)


class SignalEmitter:
    """Emits, optionally persists, and broadcasts signals.

    Signals are:
    - Immutable once emitted
    - Assigned monotonic sequence numbers
    - Appended to a JSONL ledger when a ledger path is configured
    - Pushed to subscribers (badge listeners, WebSocket clients) in order
    """

    def __init__(self, ledger_path: Path | None = None, history_limit: int = 1000) -> None:
        self._sequence = 0
        self._ledger_path = ledger_path
        self._history_limit = history_limit
        self._subscribers: list[Callable[[Signal], Any]] = []
        self._signals: list[Signal] = []
        self._lock = asyncio.Lock()

        if self._ledger_path:
            self._ledger_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def signals(self) -> list[Signal]:
        """Return the retained signals (read-only copy)."""
        return list(self._signals)

    def subscribe(self, callback: Callable[[Signal], Any]) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[Signal], Any]) -> None:
        self._subscribers = [s for s in self._subscribers if s is not callback]

    async def emit(
        self,
        signal_type: SignalType,
        context_id: int,
        payload: dict[str, Any] | None = None,
    ) -> Signal:
        """Emit a signal. This is the ONLY way to create signals."""
        async with self._lock:
            self._sequence += 1
            signal = Signal(
                sequence=self._sequence,
                signal_type=signal_type,
                timestamp=datetime.now(timezone.utc),
                context_id=context_id,
                payload=payload or {},
            )
            self._signals.append(signal)
            if len(self._signals) > self._history_limit:
                del self._signals[: len(self._signals) - self._history_limit]

        if self._ledger_path:
            self._persist(signal)

        await self._broadcast(signal)
        return signal

    def _persist(self, signal: Signal) -> None:
        with open(self._ledger_path, "a") as f:
            f.write(signal.model_dump_json() + "\n")

    async def _broadcast(self, signal: Signal) -> None:
        for subscriber in list(self._subscribers):
            try:
                result = subscriber(signal)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:
                # Subscribers must not break the emission pipeline
                emit_structured_error(
                    logger,
                    code=ErrorCode.SIGNAL_SUBSCRIBER_FAILURE,
                    message=str(exc),
                    suppressed=True,
                    context_id=signal.context_id,
                    details={"signal_type": signal.signal_type.value},
                )

    async def emit_badge_changed(self, context_id: int, badge: dict[str, Any]) -> Signal:
        """Convenience: emit a BADGE_CHANGED signal."""
        return await self.emit(SignalType.BADGE_CHANGED, context_id, badge)

    async def emit_context_pruned(self, context_id: int, removed: int, remaining: int) -> Signal:
        """Convenience: emit a CONTEXT_PRUNED signal."""
        return await self.emit(
            SignalType.CONTEXT_PRUNED,
            context_id,
            {"removed": removed, "remaining": remaining},
        )

    @staticmethod
    def load_ledger(ledger_path: Path) -> list[Signal]:
        """Load all signals from a JSONL ledger file."""
        signals = []
        if ledger_path.exists():
            with open(ledger_path) as f:
                for line in f:
                    line = line.strip()
                    if line:
                        signals.append(Signal.model_validate_json(line))
        return signals
