"""
Narrow interfaces the narrative core talks to.

Evidence and trust are owned elsewhere; the core only reports into them
and asks yes/no questions. In-memory implementations back tests and the
headless CLI.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class EvidenceLedger(Protocol):
    """
    Evidence discovered during the night.

    Implementations:
    - MemoryEvidenceLedger: In-process set (testing, CLI)
    """

    def report_discovered(self, evidence_id: str) -> None:
        """Record a discovery. Repeats are ignored."""
        ...

    def is_discovered(self, evidence_id: str) -> bool:
        ...

    def on_discovered(self, callback: Callable[[str], None]) -> None:
        """Register a callback run once per new discovery."""
        ...

    @property
    def discovered(self) -> list[str]:
        """Discovered ids in discovery order."""
        ...


@runtime_checkable
class TrustGraph(Protocol):
    """Directed trust between operator and callers."""

    def apply_delta(self, from_id: str, to_id: str, delta: float, reason: str = "") -> None:
        ...


@runtime_checkable
class WorldStateTracker(Protocol):
    """
    Night clock and end-of-night detection.

    Implementations:
    - WorldClock (systems/world.py)
    """

    @property
    def current_time_minutes(self) -> int:
        ...

    def on_scenario_ended(self, callback: Callable[[str], None]) -> None:
        """Register a callback receiving the ending id."""
        ...

    def check_ending_conditions(self) -> str | None:
        """Ending id if the night is over, else None."""
        ...


class MemoryEvidenceLedger:
    """In-memory evidence ledger."""

    def __init__(self, discovered: list[str] | None = None):
        self._discovered: list[str] = list(dict.fromkeys(discovered or []))
        self._callbacks: list[Callable[[str], None]] = []

    def report_discovered(self, evidence_id: str) -> None:
        if not evidence_id or evidence_id in self._discovered:
            return
        self._discovered.append(evidence_id)
        logger.debug(f"Evidence discovered: {evidence_id}")
        for callback in list(self._callbacks):
            callback(evidence_id)

    def is_discovered(self, evidence_id: str) -> bool:
        return evidence_id in self._discovered

    def on_discovered(self, callback: Callable[[str], None]) -> None:
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    @property
    def discovered(self) -> list[str]:
        return list(self._discovered)


@dataclass
class TrustRecord:
    from_id: str
    to_id: str
    delta: float
    reason: str = ""
    timestamp: datetime = field(default_factory=datetime.now)


class MemoryTrustGraph:
    """
    In-memory trust graph.

    Trust is clamped to [min_trust, max_trust]; every delta is kept in
    `history` whether or not clamping absorbed it.
    """

    def __init__(self, min_trust: float = -1.0, max_trust: float = 1.0):
        self._edges: dict[tuple[str, str], float] = {}
        self._min = min_trust
        self._max = max_trust
        self.history: list[TrustRecord] = []

    def apply_delta(self, from_id: str, to_id: str, delta: float, reason: str = "") -> None:
        key = (from_id, to_id)
        current = self._edges.get(key, 0.0)
        self._edges[key] = max(self._min, min(self._max, current + delta))
        self.history.append(TrustRecord(from_id=from_id, to_id=to_id, delta=delta, reason=reason))
        logger.debug(f"Trust {from_id}->{to_id}: {current:+.2f} -> {self._edges[key]:+.2f} ({reason})")

    def get_trust(self, from_id: str, to_id: str) -> float:
        return self._edges.get((from_id, to_id), 0.0)
