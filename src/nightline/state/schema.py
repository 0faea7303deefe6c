"""
Pydantic models for nightline scenarios and saves.

Scenario data (flags, end-state rules, calls) is loaded once per night and
treated as read-only. Save data (flag states, night results, cross-night
progress) serializes to JSON through the same models.
"""

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------

class ComparisonOperator(str, Enum):
    """Integer comparison applied to a category score."""
    EQUAL = "=="
    NOT_EQUAL = "!="
    GREATER_THAN = ">"
    GREATER_THAN_OR_EQUAL = ">="
    LESS_THAN = "<"
    LESS_THAN_OR_EQUAL = "<="

    @classmethod
    def _missing_(cls, value):
        # Scenario files may spell operators out: "GreaterThanOrEqual", "greater_than_or_equal"
        if isinstance(value, str):
            key = value.replace("_", "").replace(" ", "").lower()
            for member in cls:
                if member.name.replace("_", "").lower() == key:
                    return member
        return None


class CallState(str, Enum):
    INCOMING = "incoming"        # Ringing, not yet answered
    ACTIVE = "active"            # Operator is on the line
    ON_HOLD = "on_hold"          # Parked, can be resumed
    ENDED = "ended"              # Finished normally or by the operator
    MISSED = "missed"            # Rang out without an answer
    SKIPPED = "skipped"          # Trigger conditions failed when it came due


# -----------------------------------------------------------------------------
# Flags
# -----------------------------------------------------------------------------

class FlagDefinition(BaseModel):
    """Static metadata for one flag."""
    flag_id: str
    category: str
    weight: int = 1  # May be negative
    persists_across_nights: bool = False
    cancels_flags: list[str] = Field(default_factory=list)
    description: str = ""


class MutualExclusionRule(BaseModel):
    """Setting `when_flag_set` clears every flag in `cancel_flags`."""
    when_flag_set: str
    cancel_flags: list[str] = Field(default_factory=list)
    description: str = ""


class FlagsDefinition(BaseModel):
    """Per-night flag table: declared categories, flags, exclusion rules."""
    night_id: str = ""
    categories: list[str] = Field(default_factory=list)
    flag_definitions: list[FlagDefinition] = Field(default_factory=list)
    mutual_exclusion_rules: list[MutualExclusionRule] = Field(default_factory=list)

    def get_definition(self, flag_id: str) -> FlagDefinition | None:
        for definition in self.flag_definitions:
            if definition.flag_id == flag_id:
                return definition
        return None

    def get_flags_by_category(self, category: str) -> list[FlagDefinition]:
        return [d for d in self.flag_definitions if d.category == category]

    def has_category(self, category: str) -> bool:
        """A category is known if declared, or used by any flag definition."""
        if category in self.categories:
            return True
        return any(d.category == category for d in self.flag_definitions)

    def get_cancelled_flags(self, flag_id: str) -> list[str]:
        """
        Flags cancelled when `flag_id` is set.

        Merges the flag's own `cancels_flags` with every matching
        exclusion rule, preserving declaration order without duplicates.
        """
        cancelled: list[str] = []
        definition = self.get_definition(flag_id)
        if definition:
            cancelled.extend(definition.cancels_flags)
        for rule in self.mutual_exclusion_rules:
            if rule.when_flag_set == flag_id:
                cancelled.extend(rule.cancel_flags)
        return list(dict.fromkeys(cancelled))


class FlagState(BaseModel):
    """Runtime state of one flag."""
    flag_id: str
    is_set: bool = True
    set_time: int = 0  # In-game minutes since midnight
    origin_night_id: str = ""


# -----------------------------------------------------------------------------
# Conditions
# -----------------------------------------------------------------------------

class FlagCondition(BaseModel):
    kind: Literal["flag"] = "flag"
    flag_id: str
    required_value: bool = True


class ScoreCondition(BaseModel):
    kind: Literal["score"] = "score"
    category: str
    comparison: ComparisonOperator = ComparisonOperator.GREATER_THAN_OR_EQUAL
    value: int = 0


# Flag conditions need `flag_id`, score conditions need `category`, so the
# union resolves without an explicit `kind` in scenario files.
Condition = FlagCondition | ScoreCondition


# -----------------------------------------------------------------------------
# End states
# -----------------------------------------------------------------------------

class EndStateCondition(BaseModel):
    """One rule-table row. Every listed condition must hold."""
    end_state: str
    priority: int = 0
    score_conditions: list[ScoreCondition] = Field(default_factory=list)
    flag_conditions: list[FlagCondition] = Field(default_factory=list)
    description: str = ""


class EndingMapping(BaseModel):
    """Maps an end state to ending ids. `ending_id_regardless` wins if set."""
    end_state: str
    ending_id_if_survived: str = ""
    ending_id_if_died: str = ""
    ending_id_regardless: str = ""


class VictimSurvivalCondition(BaseModel):
    requires_dispatch: bool = True
    max_dispatch_time_minutes: int = 0
    dispatch_flag_id: str = "emergency_dispatched"


class ScenarioEnding(BaseModel):
    """Display data for an ending, looked up by id."""
    ending_id: str
    title: str = ""
    description: str = ""


class EndStateDefinition(BaseModel):
    """Rule table, mappings and endings for one night."""
    end_states: list[str] = Field(default_factory=list)
    conditions: list[EndStateCondition] = Field(default_factory=list)
    ending_mappings: list[EndingMapping] = Field(default_factory=list)
    victim_survival: VictimSurvivalCondition = Field(default_factory=VictimSurvivalCondition)
    default_end_state: str = ""
    default_ending_id: str = "ending_neutral"
    endings: list[ScenarioEnding] = Field(default_factory=list)

    def get_mapping(self, end_state: str) -> EndingMapping | None:
        for mapping in self.ending_mappings:
            if mapping.end_state == end_state:
                return mapping
        return None

    def get_ending(self, ending_id: str) -> ScenarioEnding | None:
        for ending in self.endings:
            if ending.ending_id == ending_id:
                return ending
        return None

    def declared_end_states(self) -> set[str]:
        """Known end-state keys: the declared table plus the default."""
        declared = set(self.end_states)
        if self.default_end_state:
            declared.add(self.default_end_state)
        return declared


# -----------------------------------------------------------------------------
# Calls
# -----------------------------------------------------------------------------

class TrustChange(BaseModel):
    """Caller-to-caller trust shift caused by a response."""
    from_id: str
    to_id: str
    delta: float
    reason: str = ""


class ResponseData(BaseModel):
    """One operator response option within a segment."""
    response_id: str
    display_text: str = ""
    actual_text: str = ""
    set_flags: list[str] = Field(default_factory=list)
    clear_flags: list[str] = Field(default_factory=list)
    next_segment_id: str | None = None  # None ends the call
    ends_call: bool = False
    is_dispatch_action: bool = False
    is_silence: bool = False
    required_evidence_ids: list[str] = Field(default_factory=list)
    conditions: list[Condition] = Field(default_factory=list)
    trust_impact: float = 0.0  # Operator -> caller
    trust_changes: list[TrustChange] = Field(default_factory=list)
    discovered_evidence_id: str = ""


class CallSegment(BaseModel):
    segment_id: str
    media_duration: float = 0.0  # Seconds; 0 presents responses immediately
    responses: list[ResponseData] = Field(default_factory=list)
    response_time_limit: float = 0.0  # Seconds; 0 waits forever
    timeout_response_id: str = ""
    default_next_segment_id: str | None = None
    auto_discovered_evidence_ids: list[str] = Field(default_factory=list)
    conditions: list[Condition] = Field(default_factory=list)

    def get_response(self, response_id: str) -> ResponseData | None:
        for response in self.responses:
            if response.response_id == response_id:
                return response
        return None


class CallData(BaseModel):
    call_id: str
    caller_id: str = ""
    incoming_time_minutes: int = 0
    ring_duration: float | None = None  # Seconds; None uses the engine default
    start_segment_id: str = ""
    segments: list[CallSegment] = Field(default_factory=list)
    trigger_conditions: list[Condition] = Field(default_factory=list)
    on_end_set_flags: list[str] = Field(default_factory=list)
    on_missed_set_flags: list[str] = Field(default_factory=list)
    is_critical: bool = False

    def get_segment(self, segment_id: str) -> CallSegment | None:
        for segment in self.segments:
            if segment.segment_id == segment_id:
                return segment
        return None

    def get_start_segment(self) -> CallSegment | None:
        """Explicit start segment, else the first declared segment."""
        if self.start_segment_id:
            return self.get_segment(self.start_segment_id)
        return self.segments[0] if self.segments else None


# -----------------------------------------------------------------------------
# Scenario
# -----------------------------------------------------------------------------

class DispatchTimingFlag(BaseModel):
    """Flag set by a dispatch made at or before `at_or_before_minutes`."""
    flag_id: str
    at_or_before_minutes: int


class NightEffect(BaseModel):
    """Consequence of an earlier night applied when this night starts."""
    source_night_id: str
    required_end_state: str = ""
    required_flags: list[str] = Field(default_factory=list)
    set_flags: list[str] = Field(default_factory=list)
    enable_call_ids: list[str] = Field(default_factory=list)
    disable_call_ids: list[str] = Field(default_factory=list)
    description: str = ""


class NightScenario(BaseModel):
    """Everything needed to play one night."""
    scenario_id: str
    title: str = ""
    start_time_minutes: int = 0
    end_time_minutes: int = 360
    real_seconds_per_game_minute: float = 1.0
    flags: FlagsDefinition = Field(default_factory=FlagsDefinition)
    end_state: EndStateDefinition = Field(default_factory=EndStateDefinition)
    calls: list[CallData] = Field(default_factory=list)
    dispatch_timing_flags: list[DispatchTimingFlag] = Field(default_factory=list)
    night_effects: list[NightEffect] = Field(default_factory=list)
    disabled_call_ids: list[str] = Field(default_factory=list)

    def get_call(self, call_id: str) -> CallData | None:
        for call in self.calls:
            if call.call_id == call_id:
                return call
        return None


# -----------------------------------------------------------------------------
# Saves
# -----------------------------------------------------------------------------

class HeldCall(BaseModel):
    """A parked call and the segment it will resume in."""
    call_id: str
    segment_id: str | None = None


class NightSaveState(BaseModel):
    """Mid-night checkpoint."""
    night_id: str
    current_call_id: str | None = None
    current_segment_id: str | None = None
    current_time_minutes: int = 0
    set_flags: list[FlagState] = Field(default_factory=list)
    missed_call_count: int = 0
    completed_call_ids: list[str] = Field(default_factory=list)
    call_outcomes: dict[str, CallState] = Field(default_factory=dict)  # Terminal state per completed call
    on_hold: list[HeldCall] = Field(default_factory=list)
    discovered_evidence_ids: list[str] = Field(default_factory=list)
    dispatch_time_minutes: int | None = None
    saved_at: datetime = Field(default_factory=datetime.now)


class NightResult(BaseModel):
    night_id: str
    end_state: str
    ending_id: str
    victim_survived: bool = False
    dispatch_time_minutes: int | None = None
    completed_at: datetime = Field(default_factory=datetime.now)


class CrossNightState(BaseModel):
    """Progress carried between nights."""
    completed_nights: list[str] = Field(default_factory=list)
    end_state_by_night: dict[str, str] = Field(default_factory=dict)
    ending_by_night: dict[str, str] = Field(default_factory=dict)
    current_night_index: int = 0
    persistent_flags: list[FlagState] = Field(default_factory=list)
    night_results: list[NightResult] = Field(default_factory=list)

    def is_night_completed(self, night_id: str) -> bool:
        return night_id in self.completed_nights

    def get_result(self, night_id: str) -> NightResult | None:
        for result in self.night_results:
            if result.night_id == night_id:
                return result
        return None

    def record_result(self, result: NightResult) -> None:
        """Store a night's result, replacing any earlier run of that night."""
        self.night_results = [r for r in self.night_results if r.night_id != result.night_id]
        self.night_results.append(result)
        if result.night_id not in self.completed_nights:
            self.completed_nights.append(result.night_id)
        self.end_state_by_night[result.night_id] = result.end_state
        self.ending_by_night[result.night_id] = result.ending_id
