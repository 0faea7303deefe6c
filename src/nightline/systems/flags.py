"""
Flag store: the night's record of what the player has done.

Flags are boolean facts ("revealed_affair", "emergency_dispatched") with
a category and weight from the scenario's flag table. Category scores are
the summed weights of set flags and feed end-state resolution.

One store belongs to one night. Nothing here is global.
"""

from __future__ import annotations

import logging
from typing import Iterable

from ..rules.exclusion import apply_mutual_exclusion
from ..state.event_bus import EventBus, EventType
from ..state.schema import FlagDefinition, FlagsDefinition, FlagState

logger = logging.getLogger(__name__)


class FlagStore:
    """
    Boolean flags with metadata and mutual-exclusion cascades.

    Args:
        bus: Event bus for flag/score events (optional)
        refresh_set_time: If True, re-setting a set flag moves its
            timestamp to the new time. By default the first set wins.
    """

    def __init__(self, bus: EventBus | None = None, refresh_set_time: bool = False):
        self._bus = bus
        self._refresh_set_time = refresh_set_time
        self._night_id = ""
        self._definitions: FlagsDefinition | None = None
        self._states: dict[str, FlagState] = {}

    @property
    def night_id(self) -> str:
        return self._night_id

    @property
    def definitions(self) -> FlagsDefinition | None:
        return self._definitions

    @property
    def is_initialized(self) -> bool:
        return self._definitions is not None

    # ─── Lifecycle ───────────────────────────────────────────────

    def initialize(self, night_id: str, definitions: FlagsDefinition) -> bool:
        """
        Reset flags and load the night's flag table.

        Returns False (and changes nothing) if the store was already
        initialized and not cleared since.
        """
        if self._definitions is not None:
            logger.warning(
                f"FlagStore already initialized for '{self._night_id}'; "
                f"call clear() before initializing '{night_id}'"
            )
            return False

        self._night_id = night_id
        self._definitions = definitions
        self._states = {}
        logger.debug(
            f"FlagStore initialized: {night_id}, "
            f"{len(definitions.flag_definitions)} definitions"
        )
        return True

    def clear(self) -> None:
        """Drop flags and definitions so the store can be re-initialized."""
        self._night_id = ""
        self._definitions = None
        self._states = {}

    def clear_all_flags(self) -> None:
        """Unset every flag but keep the definitions."""
        previous = [s.flag_id for s in self._states.values() if s.is_set]
        categories = {self._category_of(f) for f in previous}
        self._states = {}
        for flag_id in previous:
            self._emit(EventType.FLAG_CLEARED, flag_id=flag_id, reason="clear_all")
        for category in sorted(c for c in categories if c):
            self._emit(EventType.SCORE_CHANGED, category=category, score=0)

    # ─── Mutation ────────────────────────────────────────────────

    def set_flag(self, flag_id: str, at_time_minutes: int = 0) -> bool:
        """
        Set a flag and apply mutual exclusion.

        Idempotent: setting a set flag does not change scores. Returns
        True if the flag changed from unset to set.
        """
        if not flag_id:
            logger.warning("Cannot set a flag with an empty id")
            return False

        existing = self._states.get(flag_id)
        if existing is not None and existing.is_set:
            if self._refresh_set_time and existing.set_time != at_time_minutes:
                self._states[flag_id] = existing.model_copy(update={"set_time": at_time_minutes})
                logger.debug(f"Flag {flag_id} re-set, time -> {at_time_minutes}")
            return False

        if self._definitions is not None and self._definitions.get_definition(flag_id) is None:
            logger.debug(f"Setting undefined flag '{flag_id}' (weight 0)")

        self._states[flag_id] = FlagState(
            flag_id=flag_id,
            is_set=True,
            set_time=at_time_minutes,
            origin_night_id=self._night_id,
        )
        logger.debug(f"Flag set: {flag_id} (t={at_time_minutes})")
        self._emit(EventType.FLAG_SET, flag_id=flag_id, set_time=at_time_minutes)

        changed = {self._category_of(flag_id)}
        cancels = self._definitions.get_cancelled_flags(flag_id) if self._definitions else []
        if cancels:
            result = apply_mutual_exclusion(self._states, flag_id, cancels)
            self._states = result.states
            for cancelled in result.cancelled:
                logger.debug(f"Mutual exclusion: {flag_id} cancels {cancelled}")
                self._emit(EventType.FLAG_CLEARED, flag_id=cancelled, reason=f"cancelled_by:{flag_id}")
                changed.add(self._category_of(cancelled))

        self._notify_scores(changed)
        return True

    def clear_flag(self, flag_id: str) -> bool:
        """Unset a flag. Returns False if it was not set."""
        state = self._states.get(flag_id) if flag_id else None
        if state is None or not state.is_set:
            return False

        self._states[flag_id] = state.model_copy(update={"is_set": False})
        logger.debug(f"Flag cleared: {flag_id}")
        self._emit(EventType.FLAG_CLEARED, flag_id=flag_id, reason="cleared")
        self._notify_scores({self._category_of(flag_id)})
        return True

    def set_flags(self, flag_ids: Iterable[str], at_time_minutes: int = 0) -> None:
        for flag_id in flag_ids:
            self.set_flag(flag_id, at_time_minutes)

    def clear_flags(self, flag_ids: Iterable[str]) -> None:
        for flag_id in flag_ids:
            self.clear_flag(flag_id)

    # ─── Queries ─────────────────────────────────────────────────

    def is_set(self, flag_id: str) -> bool:
        state = self._states.get(flag_id)
        return state is not None and state.is_set

    def get_flag_state(self, flag_id: str) -> FlagState | None:
        return self._states.get(flag_id)

    def get_definition(self, flag_id: str) -> FlagDefinition | None:
        if self._definitions is None:
            return None
        return self._definitions.get_definition(flag_id)

    def get_category_score(self, category: str) -> int:
        """Sum of weights of set flags in `category`. Undefined flags count 0."""
        if self._definitions is None:
            return 0
        weights = {}
        for definition in self._definitions.get_flags_by_category(category):
            weights.setdefault(definition.flag_id, definition.weight)
        return sum(w for flag_id, w in weights.items() if self.is_set(flag_id))

    def get_scores(self) -> dict[str, int]:
        """Score of every known category."""
        if self._definitions is None:
            return {}
        categories = list(self._definitions.categories)
        for definition in self._definitions.flag_definitions:
            if definition.category not in categories:
                categories.append(definition.category)
        return {c: self.get_category_score(c) for c in categories}

    def get_set_flags_by_category(self, category: str) -> list[str]:
        return [
            s.flag_id for s in self._states.values()
            if s.is_set and self._category_of(s.flag_id) == category
        ]

    def is_known_flag(self, flag_id: str) -> bool:
        """Defined in the table, or already recorded. Anything goes without a table."""
        if self._definitions is None or not self._definitions.flag_definitions:
            return True
        return self._definitions.get_definition(flag_id) is not None or flag_id in self._states

    def is_known_category(self, category: str) -> bool:
        if self._definitions is None:
            return True
        if not self._definitions.categories and not self._definitions.flag_definitions:
            return True
        return self._definitions.has_category(category)

    def get_all_flags(self) -> list[FlagState]:
        """Every set flag, for export."""
        return [s.model_copy() for s in self._states.values() if s.is_set]

    def get_persistent_flags(self) -> list[FlagState]:
        """Set flags whose definition persists across nights."""
        result = []
        for state in self._states.values():
            if not state.is_set:
                continue
            definition = self.get_definition(state.flag_id)
            if definition is not None and definition.persists_across_nights:
                result.append(state.model_copy())
        return result

    # ─── Persistence ─────────────────────────────────────────────

    def import_persistent_flags(self, flags: Iterable[FlagState]) -> int:
        """
        Pre-set flags carried over from earlier nights.

        No mutual exclusion is applied. Returns the number imported.
        """
        imported = 0
        changed: set[str] = set()
        for flag in flags:
            if not flag.is_set or self.is_set(flag.flag_id):
                continue
            self._states[flag.flag_id] = flag.model_copy()
            imported += 1
            changed.add(self._category_of(flag.flag_id))
            self._emit(EventType.FLAG_SET, flag_id=flag.flag_id, set_time=flag.set_time, imported=True)
        if imported:
            logger.info(f"Imported {imported} persistent flags into {self._night_id}")
            self._notify_scores(changed)
        return imported

    def snapshot(self) -> list[FlagState]:
        """Copy of every set flag, for mid-night saves."""
        return self.get_all_flags()

    def restore(self, flags: Iterable[FlagState]) -> None:
        """Replace all flag states with a snapshot. Emits no events."""
        self._states = {f.flag_id: f.model_copy() for f in flags if f.is_set}

    # ─── Internals ───────────────────────────────────────────────

    def _category_of(self, flag_id: str) -> str:
        definition = self.get_definition(flag_id)
        return definition.category if definition else ""

    def _notify_scores(self, categories: set[str]) -> None:
        for category in sorted(c for c in categories if c):
            self._emit(EventType.SCORE_CHANGED, category=category, score=self.get_category_score(category))

    def _emit(self, event_type: EventType, **data) -> None:
        if self._bus is not None:
            self._bus.emit(event_type, night_id=self._night_id, **data)
