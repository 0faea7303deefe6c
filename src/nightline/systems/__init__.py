"""
Narrative systems for nightline.

Each system owns one concern of a night and receives its collaborators
through its constructor.
"""

from .flags import FlagStore
from .endstate import EndStateResolver, EndingResolution
from .callflow import (
    CallFlowEngine,
    CallFlowError,
    EnginePhase,
    InvalidPhaseError,
    VALID_TRANSITIONS,
)
from .collaborators import (
    EvidenceLedger,
    TrustGraph,
    WorldStateTracker,
    MemoryEvidenceLedger,
    MemoryTrustGraph,
)
from .world import WorldClock, format_time, parse_time
from .night import NightSession, NightController, applicable_effects

__all__ = [
    "FlagStore",
    "EndStateResolver",
    "EndingResolution",
    # Call flow
    "CallFlowEngine",
    "CallFlowError",
    "EnginePhase",
    "InvalidPhaseError",
    "VALID_TRANSITIONS",
    # Collaborators
    "EvidenceLedger",
    "TrustGraph",
    "WorldStateTracker",
    "MemoryEvidenceLedger",
    "MemoryTrustGraph",
    # Night
    "WorldClock",
    "format_time",
    "parse_time",
    "NightSession",
    "NightController",
    "applicable_effects",
]
