"""
End-state resolution for a night.

Resolution is a two-step lookup:
    flags --(rule table)--> end state --(mappings + survival)--> ending id

Rule rows are AND-ed condition lists with a priority. The highest
priority match wins; equal priorities fall back to declaration order, so
specific outcomes ("exposed") can out-rank catch-alls ("contained").

Bad rule data never raises here. An unknown reference fails its
condition, and no match resolves to the default end state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..rules.conditions import evaluate_all
from ..state.event_bus import EventBus, EventType
from ..state.schema import EndStateCondition, EndStateDefinition, ScenarioEnding

if TYPE_CHECKING:
    from .flags import FlagStore

logger = logging.getLogger(__name__)


@dataclass
class EndingResolution:
    """Outcome of determine_ending()."""
    end_state: str
    ending_id: str
    victim_survived: bool
    dispatch_time_minutes: int | None = None
    matched_priority: int | None = None  # None when the default end state was used

    def model_dump(self) -> dict:
        """Serialize for JSON (matches Pydantic convention)."""
        return {
            "end_state": self.end_state,
            "ending_id": self.ending_id,
            "victim_survived": self.victim_survived,
            "dispatch_time_minutes": self.dispatch_time_minutes,
            "matched_priority": self.matched_priority,
        }


class EndStateResolver:
    """
    Resolves a night's flags to exactly one ending id.

    Usage:
        resolver = EndStateResolver(flags, scenario.end_state, bus=bus)
        ending_id = resolver.determine_ending(dispatch_time_minutes=150)
    """

    def __init__(
        self,
        flags: "FlagStore",
        definition: EndStateDefinition,
        bus: EventBus | None = None,
    ):
        self._flags = flags
        self._definition = definition
        self._bus = bus
        self._last: EndingResolution | None = None

    @property
    def definition(self) -> EndStateDefinition:
        return self._definition

    @property
    def last_resolution(self) -> EndingResolution | None:
        return self._last

    def matching_conditions(self) -> list[EndStateCondition]:
        """Rule rows whose conditions all hold, in declaration order."""
        # An empty end-state table means every key is accepted
        declared = self._definition.declared_end_states() if self._definition.end_states else set()
        matches = []
        for condition in self._definition.conditions:
            if declared and condition.end_state not in declared:
                logger.warning(f"Rule targets undeclared end state '{condition.end_state}'")
                continue
            if evaluate_all(condition.flag_conditions, self._flags) and evaluate_all(
                condition.score_conditions, self._flags
            ):
                matches.append(condition)
        return matches

    def _best_match(self) -> EndStateCondition | None:
        best: EndStateCondition | None = None
        for condition in self.matching_conditions():
            # Strictly greater keeps the first declared row on ties
            if best is None or condition.priority > best.priority:
                best = condition
        return best

    def calculate_end_state(self) -> str:
        """Highest-priority matching end state, else the default."""
        best = self._best_match()
        if best is None:
            logger.debug(f"No end-state rule matched, using default '{self._definition.default_end_state}'")
            return self._definition.default_end_state
        return best.end_state

    def check_end_state_condition(self, end_state: str) -> bool:
        """True if any rule row for `end_state` currently holds."""
        return any(c.end_state == end_state for c in self.matching_conditions())

    def calculate_victim_survival(self, dispatch_time_minutes: int | None) -> bool:
        survival = self._definition.victim_survival
        if not survival.requires_dispatch:
            return True
        return (
            dispatch_time_minutes is not None
            and dispatch_time_minutes <= survival.max_dispatch_time_minutes
        )

    def select_ending(self, end_state: str, victim_survived: bool) -> str:
        """
        Map an end state to an ending id.

        A regardless-ending wins over the survival branches. A missing
        mapping or an empty branch falls back to the default ending.
        """
        mapping = self._definition.get_mapping(end_state)
        if mapping is None:
            logger.warning(f"No ending mapping for end state '{end_state}'")
            return self._definition.default_ending_id

        if mapping.ending_id_regardless:
            return mapping.ending_id_regardless

        ending_id = mapping.ending_id_if_survived if victim_survived else mapping.ending_id_if_died
        return ending_id or self._definition.default_ending_id

    def determine_ending(self, dispatch_time_minutes: int | None = None) -> str:
        """
        Resolve the night to an ending id.

        Args:
            dispatch_time_minutes: In-game minute of the first dispatch,
                or None if help was never sent

        Returns:
            The ending id. Always a string.
        """
        best = self._best_match()
        end_state = best.end_state if best else self._definition.default_end_state
        survived = self.calculate_victim_survival(dispatch_time_minutes)
        ending_id = self.select_ending(end_state, survived)

        self._last = EndingResolution(
            end_state=end_state,
            ending_id=ending_id,
            victim_survived=survived,
            dispatch_time_minutes=dispatch_time_minutes,
            matched_priority=best.priority if best else None,
        )
        logger.info(f"Resolved end state '{end_state}' -> '{ending_id}' (survived={survived})")

        if self._bus is not None:
            self._bus.emit(
                EventType.END_STATE_RESOLVED,
                night_id=self._flags.night_id,
                **self._last.model_dump(),
            )
        return ending_id

    def get_ending(self, ending_id: str) -> ScenarioEnding | None:
        return self._definition.get_ending(ending_id)

    def get_ending_title(self, ending_id: str) -> str:
        """Display title for an ending, or the id itself."""
        ending = self._definition.get_ending(ending_id)
        return ending.title if ending and ending.title else ending_id
