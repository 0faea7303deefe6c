"""State models, events and persistence for nightline."""

from .schema import (
    CallData,
    CallSegment,
    CallState,
    ComparisonOperator,
    CrossNightState,
    EndStateCondition,
    EndStateDefinition,
    EndingMapping,
    FlagCondition,
    FlagDefinition,
    FlagsDefinition,
    FlagState,
    HeldCall,
    MutualExclusionRule,
    NightEffect,
    NightResult,
    NightSaveState,
    NightScenario,
    ResponseData,
    ScoreCondition,
    VictimSurvivalCondition,
)
from .event_bus import EventBus, EventType, NarrativeEvent
from .store import SaveStore, JsonSaveStore, MemorySaveStore
from .loader import (
    ScenarioIssue,
    ScenarioLoadError,
    bundled_scenario_path,
    load_scenario,
    validate_scenario,
)

__all__ = [
    # Schema
    "CallData",
    "CallSegment",
    "CallState",
    "ComparisonOperator",
    "CrossNightState",
    "EndStateCondition",
    "EndStateDefinition",
    "EndingMapping",
    "FlagCondition",
    "FlagDefinition",
    "FlagsDefinition",
    "FlagState",
    "HeldCall",
    "MutualExclusionRule",
    "NightEffect",
    "NightResult",
    "NightSaveState",
    "NightScenario",
    "ResponseData",
    "ScoreCondition",
    "VictimSurvivalCondition",
    # Events
    "EventBus",
    "EventType",
    "NarrativeEvent",
    # Storage
    "SaveStore",
    "JsonSaveStore",
    "MemorySaveStore",
    # Loading
    "ScenarioIssue",
    "ScenarioLoadError",
    "bundled_scenario_path",
    "load_scenario",
    "validate_scenario",
]
