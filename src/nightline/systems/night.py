"""
Night session and multi-night progression.

A NightSession wires one night together: flag store, end-state resolver,
call-flow engine and clock, all built here and handed to each other. No
component looks another up by itself.

A NightController runs an ordered list of nights, carrying persistent
flags and results between them through the save store.

Usage:
    session = NightSession(scenario, store)
    session.start()
    while session.result is None:
        session.tick(0.5)
        ...player input via session.engine...
    print(session.result.ending_id)
"""

from __future__ import annotations

import logging

from ..config import DEFAULT_CONFIG, EngineConfig
from ..state.event_bus import EventBus, EventType, NarrativeEvent
from ..state.schema import (
    CrossNightState,
    NightEffect,
    NightResult,
    NightSaveState,
    NightScenario,
)
from ..state.store import SaveStore
from .callflow import CallFlowEngine
from .collaborators import (
    EvidenceLedger,
    MemoryEvidenceLedger,
    MemoryTrustGraph,
    TrustGraph,
)
from .endstate import EndStateResolver
from .flags import FlagStore
from .world import WorldClock

logger = logging.getLogger(__name__)


def applicable_effects(
    effects: list[NightEffect],
    cross_night: CrossNightState,
    flags: FlagStore,
) -> list[NightEffect]:
    """
    Night effects whose source night is done and whose requirements hold.

    Required flags are checked against the store after persistent flags
    have been imported.
    """
    result = []
    for effect in effects:
        if not cross_night.is_night_completed(effect.source_night_id):
            continue
        if effect.required_end_state:
            if cross_night.end_state_by_night.get(effect.source_night_id) != effect.required_end_state:
                continue
        if not all(flags.is_set(f) for f in effect.required_flags):
            continue
        result.append(effect)
    return result


class NightSession:
    """
    One playable night.

    Args:
        scenario: The night to play
        store: Save store for persistent flags, results and checkpoints
        bus: Event bus (a private one is created if omitted)
        config: Engine configuration
        evidence: Evidence ledger (a fresh in-memory one if omitted)
        trust: Trust graph (a fresh in-memory one if omitted)
        autosave: Write a checkpoint whenever a call ends
    """

    def __init__(
        self,
        scenario: NightScenario,
        store: SaveStore,
        bus: EventBus | None = None,
        config: EngineConfig | None = None,
        evidence: EvidenceLedger | None = None,
        trust: TrustGraph | None = None,
        autosave: bool = True,
    ):
        self.scenario = scenario
        self.store = store
        self.bus = bus or EventBus()
        self.config: EngineConfig = {**DEFAULT_CONFIG, **(config or {})}
        self.evidence = evidence if evidence is not None else MemoryEvidenceLedger()
        self.trust = trust if trust is not None else MemoryTrustGraph()
        self.autosave = autosave

        self.flags = FlagStore(self.bus, refresh_set_time=self.config["refresh_flag_set_time"])
        self.clock = WorldClock(
            start_time_minutes=scenario.start_time_minutes,
            end_time_minutes=scenario.end_time_minutes,
            real_seconds_per_game_minute=scenario.real_seconds_per_game_minute,
        )
        self.resolver = EndStateResolver(self.flags, scenario.end_state, bus=self.bus)
        self.engine = CallFlowEngine(
            self.flags,
            bus=self.bus,
            evidence=self.evidence,
            trust=self.trust,
            world=self.clock,
            config=self.config,
        )
        self.clock.set_ending_resolver(
            lambda: self.resolver.determine_ending(self.engine.dispatch_time_minutes)
        )

        self.applied_effects: list[NightEffect] = []
        self.result: NightResult | None = None
        self._started = False

        self.bus.on(EventType.ALL_CALLS_COMPLETE, self._on_all_calls_complete)
        self.bus.on(EventType.CALL_ENDED, self._on_call_ended)

    @property
    def night_id(self) -> str:
        return self.scenario.scenario_id

    @property
    def is_started(self) -> bool:
        return self._started

    @property
    def is_finished(self) -> bool:
        return self.result is not None

    # ─── Lifecycle ───────────────────────────────────────────────

    def start(self, resume: bool = True) -> bool:
        """
        Begin the night.

        Imports persistent flags from earlier nights, applies night
        effects, loads calls, and (if `resume` and a checkpoint exists)
        restores mid-night progress. Returns True if a checkpoint was
        restored.
        """
        if self._started:
            logger.warning(f"Night {self.night_id} already started")
            return False

        self.flags.initialize(self.night_id, self.scenario.flags)
        self.flags.import_persistent_flags(self.store.load_persistent_flags(self.night_id))

        cross_night = self.store.load_cross_night()
        self.applied_effects = applicable_effects(self.scenario.night_effects, cross_night, self.flags)
        enabled: list[str] = []
        disabled: list[str] = []
        for effect in self.applied_effects:
            logger.info(f"Applying effect from {effect.source_night_id}: {effect.description or effect.set_flags}")
            self.flags.set_flags(effect.set_flags, self.scenario.start_time_minutes)
            enabled.extend(effect.enable_call_ids)
            disabled.extend(effect.disable_call_ids)
        self.engine.load_scenario(self.scenario, enabled_call_ids=enabled, disabled_call_ids=disabled)

        restored = False
        checkpoint = self.store.load_night_state(self.night_id) if resume else None
        if checkpoint is not None:
            self._restore(checkpoint)
            restored = True

        self._started = True
        self.clock.start()
        self.bus.emit(EventType.NIGHT_STARTED, night_id=self.night_id, restored=restored)
        self.engine.poll_scheduled_calls(self.clock.current_time_minutes)
        self._check_night_over()
        return restored

    def tick(self, delta_seconds: float) -> NightResult | None:
        """
        Advance the night by `delta_seconds` of real time.

        Returns the NightResult once the night is over, else None.
        """
        if not self._started:
            raise RuntimeError("NightSession.start() must be called before tick()")
        if self.result is not None:
            return self.result

        self.clock.update(delta_seconds)
        self.engine.tick(delta_seconds)
        self.engine.poll_scheduled_calls(self.clock.current_time_minutes)
        return self._check_night_over()

    def finish(self) -> NightResult:
        """
        Resolve the ending and record the night. Safe to call twice.
        """
        if self.result is not None:
            return self.result

        ending_id = self.resolver.determine_ending(self.engine.dispatch_time_minutes)
        resolution = self.resolver.last_resolution

        self.store.save_persistent_flags(self.night_id, self.flags.get_persistent_flags())
        self.result = NightResult(
            night_id=self.night_id,
            end_state=resolution.end_state,
            ending_id=ending_id,
            victim_survived=resolution.victim_survived,
            dispatch_time_minutes=self.engine.dispatch_time_minutes,
        )
        self.store.save_night_result(self.result)
        self.clock.end_scenario(ending_id)

        logger.info(f"Night {self.night_id} finished: {resolution.end_state} -> {ending_id}")
        self.bus.emit(
            EventType.NIGHT_ENDED,
            night_id=self.night_id,
            end_state=resolution.end_state,
            ending_id=ending_id,
            missed_call_count=self.engine.missed_call_count,
        )
        return self.result

    # ─── Checkpoints ─────────────────────────────────────────────

    def save_checkpoint(self) -> NightSaveState:
        """Snapshot mid-night progress into the store."""
        call = self.engine.current_call
        segment = self.engine.current_segment
        state = NightSaveState(
            night_id=self.night_id,
            current_call_id=call.call_id if call else None,
            current_segment_id=segment.segment_id if segment else None,
            current_time_minutes=self.clock.current_time_minutes,
            set_flags=self.flags.snapshot(),
            missed_call_count=self.engine.missed_call_count,
            completed_call_ids=self.engine.completed_call_ids,
            call_outcomes={c: self.engine.call_state(c) for c in self.engine.completed_call_ids},
            on_hold=self.engine.held_calls,
            discovered_evidence_ids=self.evidence.discovered,
            dispatch_time_minutes=self.engine.dispatch_time_minutes,
        )
        self.store.save_night_state(state)
        self.bus.emit(EventType.NIGHT_SAVED, night_id=self.night_id, time_minutes=state.current_time_minutes)
        return state

    def _restore(self, state: NightSaveState) -> None:
        logger.info(f"Restoring {self.night_id} checkpoint at minute {state.current_time_minutes}")
        self.flags.restore(state.set_flags)
        self.clock.set_time(state.current_time_minutes)
        # Evidence first: the resumed segment filters its responses on it
        for evidence_id in state.discovered_evidence_ids:
            self.evidence.report_discovered(evidence_id)
        self.engine.restore_progress(
            completed_call_ids=state.completed_call_ids,
            missed_call_count=state.missed_call_count,
            dispatch_time_minutes=state.dispatch_time_minutes,
            current_call_id=state.current_call_id,
            current_segment_id=state.current_segment_id,
            call_outcomes=state.call_outcomes,
            on_hold=state.on_hold,
        )

    def detach(self) -> None:
        """Stop listening on the shared bus."""
        self.bus.off(EventType.ALL_CALLS_COMPLETE, self._on_all_calls_complete)
        self.bus.off(EventType.CALL_ENDED, self._on_call_ended)

    # ─── Internals ───────────────────────────────────────────────

    def _check_night_over(self) -> NightResult | None:
        if self.clock.is_night_over:
            return self.finish()
        return None

    def _on_all_calls_complete(self, event: NarrativeEvent) -> None:
        if event.night_id == self.night_id:
            self.clock.mark_all_calls_complete()

    def _on_call_ended(self, event: NarrativeEvent) -> None:
        if self.autosave and self._started and self.result is None and event.night_id == self.night_id:
            self.save_checkpoint()


class NightController:
    """
    Ordered nights with progress kept in the save store.

    Trust carries over between nights; evidence starts fresh each night.
    """

    def __init__(
        self,
        scenarios: list[NightScenario],
        store: SaveStore,
        bus: EventBus | None = None,
        config: EngineConfig | None = None,
        trust: TrustGraph | None = None,
    ):
        if not scenarios:
            raise ValueError("NightController needs at least one scenario")
        self.scenarios = list(scenarios)
        self.store = store
        self.bus = bus or EventBus()
        self.config = config
        self.trust = trust if trust is not None else MemoryTrustGraph()
        self.current_session: NightSession | None = None
        self._index = 0

    @property
    def current_night_index(self) -> int:
        return self._index

    @property
    def current_scenario(self) -> NightScenario | None:
        if self._index < len(self.scenarios):
            return self.scenarios[self._index]
        return None

    @property
    def all_nights_complete(self) -> bool:
        return self._index >= len(self.scenarios)

    def start_new_game(self) -> NightSession:
        """Wipe saves and start the first night."""
        self.store.reset()
        return self.start_night(0)

    def continue_game(self) -> NightSession | None:
        """Start (or resume) the night recorded in the save. None if all are done."""
        self._index = self.store.load_cross_night().current_night_index
        if self.all_nights_complete:
            return None
        return self.start_night(self._index)

    def start_night(self, index: int) -> NightSession:
        if not 0 <= index < len(self.scenarios):
            raise IndexError(f"No night at index {index}")

        self._index = index
        if self.current_session is not None:
            self.current_session.detach()
        session = NightSession(
            self.scenarios[index],
            self.store,
            bus=self.bus,
            config=self.config,
            trust=self.trust,
        )
        self.current_session = session
        session.start()
        return session

    def end_current_night(self) -> NightResult:
        """
        Finish the current night and move on.

        Starts the next night if there is one.
        """
        if self.current_session is None:
            raise RuntimeError("No night in progress")

        result = self.current_session.finish()
        self._index += 1
        if self._index < len(self.scenarios):
            self.start_night(self._index)
        else:
            logger.info("All nights complete")
        return result
