"""
Pytest fixtures for nightline tests.

Provides in-memory stores, a small flag table, and builders for
hand-made calls so engine tests don't depend on the bundled scenario.
"""

import pytest
from pathlib import Path

# Add src to path for imports when the package isn't installed
import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from nightline.state.event_bus import EventBus
from nightline.state.loader import bundled_scenario_path, load_scenario
from nightline.state.schema import (
    CallData,
    CallSegment,
    EndStateCondition,
    EndStateDefinition,
    EndingMapping,
    FlagDefinition,
    FlagsDefinition,
    MutualExclusionRule,
    NightScenario,
    ResponseData,
    ScoreCondition,
    VictimSurvivalCondition,
)
from nightline.state.store import MemorySaveStore
from nightline.systems.callflow import CallFlowEngine
from nightline.systems.collaborators import MemoryEvidenceLedger, MemoryTrustGraph
from nightline.systems.flags import FlagStore
from nightline.systems.world import WorldClock


@pytest.fixture
def bus():
    """Fresh event bus."""
    return EventBus()


@pytest.fixture
def flags_definition():
    """Disclosure/Evidence/Escalation table from the Karen call."""
    return FlagsDefinition(
        night_id="night_test",
        categories=["Reassurance", "Disclosure", "Escalation", "Evidence", "Event"],
        flag_definitions=[
            FlagDefinition(flag_id="shared_medical_history", category="Disclosure", weight=1),
            FlagDefinition(flag_id="revealed_affair", category="Disclosure", weight=1),
            FlagDefinition(flag_id="karen_confession", category="Disclosure", weight=2,
                           persists_across_nights=True),
            FlagDefinition(flag_id="found_contradiction", category="Evidence", weight=2),
            FlagDefinition(flag_id="emergency_dispatched", category="Escalation", weight=3,
                           persists_across_nights=True),
            FlagDefinition(flag_id="told_to_wait", category="Reassurance", weight=1),
            FlagDefinition(flag_id="urged_leave", category="Escalation", weight=1),
            FlagDefinition(flag_id="calmed_caller", category="Reassurance", weight=1,
                           cancels_flags=["urged_leave"]),
            FlagDefinition(flag_id="lied_to_caller", category="Reassurance", weight=-2),
            FlagDefinition(flag_id="call_missed", category="Event", weight=0),
        ],
        mutual_exclusion_rules=[
            MutualExclusionRule(when_flag_set="urged_leave", cancel_flags=["told_to_wait"]),
            MutualExclusionRule(when_flag_set="told_to_wait", cancel_flags=["urged_leave"]),
        ],
    )


@pytest.fixture
def flags(bus, flags_definition):
    """Initialized flag store."""
    store = FlagStore(bus)
    store.initialize("night_test", flags_definition)
    return store


@pytest.fixture
def end_state_definition():
    """Exposed > contained > absorbed, with a 170-minute rescue window."""
    return EndStateDefinition(
        end_states=["exposed", "contained", "absorbed", "unresolved"],
        default_end_state="unresolved",
        default_ending_id="ending_neutral",
        conditions=[
            EndStateCondition(
                end_state="exposed",
                priority=100,
                score_conditions=[
                    ScoreCondition(category="Disclosure", comparison=">=", value=4),
                    ScoreCondition(category="Evidence", comparison=">=", value=2),
                ],
            ),
            EndStateCondition(
                end_state="contained",
                priority=10,
                score_conditions=[ScoreCondition(category="Escalation", comparison=">=", value=1)],
            ),
            EndStateCondition(
                end_state="absorbed",
                priority=0,
                score_conditions=[
                    ScoreCondition(category="Disclosure", comparison="==", value=0),
                    ScoreCondition(category="Escalation", comparison="==", value=0),
                    ScoreCondition(category="Reassurance", comparison="==", value=0),
                ],
            ),
        ],
        ending_mappings=[
            EndingMapping(end_state="exposed", ending_id_if_survived="ending_truth_save",
                          ending_id_if_died="ending_truth_late"),
            EndingMapping(end_state="contained", ending_id_if_survived="ending_long_road",
                          ending_id_if_died="ending_contained_fail"),
            EndingMapping(end_state="absorbed", ending_id_regardless="ending_absorbed"),
        ],
        victim_survival=VictimSurvivalCondition(
            requires_dispatch=True,
            max_dispatch_time_minutes=170,
            dispatch_flag_id="emergency_dispatched",
        ),
    )


def make_call(call_id: str = "call_a", segments: list[CallSegment] | None = None, **kwargs) -> CallData:
    """Call with two segments by default: greet -> close."""
    if segments is None:
        segments = [
            CallSegment(
                segment_id="greet",
                responses=[
                    ResponseData(response_id="reassure", set_flags=["told_to_wait"], next_segment_id="close"),
                    ResponseData(response_id="escalate", set_flags=["urged_leave"], next_segment_id="close"),
                ],
            ),
            CallSegment(
                segment_id="close",
                responses=[
                    ResponseData(response_id="dispatch", is_dispatch_action=True, ends_call=True),
                    ResponseData(response_id="goodbye", ends_call=True),
                ],
            ),
        ]
    return CallData(call_id=call_id, caller_id=kwargs.pop("caller_id", "karen"), segments=segments, **kwargs)


def make_scenario(calls: list[CallData], flags_definition: FlagsDefinition,
                  end_state: EndStateDefinition | None = None, **kwargs) -> NightScenario:
    return NightScenario(
        scenario_id=kwargs.pop("scenario_id", "night_test"),
        flags=flags_definition,
        end_state=end_state or EndStateDefinition(default_end_state="unresolved"),
        calls=calls,
        **kwargs,
    )


@pytest.fixture
def clock():
    return WorldClock(start_time_minutes=120, end_time_minutes=240, real_seconds_per_game_minute=1.0)


@pytest.fixture
def evidence():
    return MemoryEvidenceLedger()


@pytest.fixture
def trust():
    return MemoryTrustGraph()


@pytest.fixture
def engine(flags, bus, evidence, trust, clock):
    """Call-flow engine wired to in-memory collaborators."""
    return CallFlowEngine(flags, bus=bus, evidence=evidence, trust=trust, world=clock)


@pytest.fixture
def memory_store():
    """In-memory save store for testing."""
    return MemorySaveStore()


@pytest.fixture
def night_01():
    """The bundled first night."""
    return load_scenario(bundled_scenario_path("night_01"))


@pytest.fixture
def night_02():
    return load_scenario(bundled_scenario_path("night_02"))
