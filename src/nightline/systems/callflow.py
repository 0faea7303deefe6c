"""
Call-flow engine: the operator's side of every call in a night.

Owns the phase state machine for the line:
    IDLE → INCOMING → ACTIVE → DISPLAYING_MEDIA → AWAITING_RESPONSE
         → APPLYING_EFFECTS → (next segment | ENDED) → IDLE

Design principles:
- Exactly one response is processed per segment visit. If the player
  can't or doesn't answer, a timeout or silence response stands in.
- Effects of a response are applied together, once, in a fixed order.
- Time is a number passed to tick(); deadlines are compared, never
  awaited.
- Collaborators (flags, evidence, trust, clock) are passed in. The
  engine never reaches for globals.

Usage:
    engine = CallFlowEngine(flags, bus=bus, evidence=ledger, trust=trust, world=clock)
    engine.load_scenario(scenario)
    engine.poll_scheduled_calls(clock.current_time_minutes)
    engine.answer_call("call_karen")
    engine.select_response("ask_name")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Iterable

from ..config import DEFAULT_CONFIG, EngineConfig
from ..rules.conditions import evaluate_all
from ..state.event_bus import EventBus, EventType
from ..state.schema import (
    CallData,
    CallSegment,
    CallState,
    HeldCall,
    NightScenario,
    ResponseData,
)

if TYPE_CHECKING:
    from .collaborators import EvidenceLedger, TrustGraph, WorldStateTracker
    from .flags import FlagStore

logger = logging.getLogger(__name__)

SILENCE_RESPONSE_ID = "__silence__"
DEFAULT_DISPATCH_FLAG = "emergency_dispatched"


class EnginePhase(str, Enum):
    """Phase of the operator's line."""
    IDLE = "idle"                            # Nothing ringing, nobody on the line
    INCOMING = "incoming"                    # At least one call ringing
    ACTIVE = "active"                        # Call answered, entering a segment
    DISPLAYING_MEDIA = "displaying_media"    # Caller audio/video playing
    AWAITING_RESPONSE = "awaiting_response"  # Responses presented
    APPLYING_EFFECTS = "applying_effects"    # Processing the chosen response
    ENDED = "ended"                          # Call finished or parked


# Allowed next phases for each phase
VALID_TRANSITIONS: dict[EnginePhase, set[EnginePhase]] = {
    EnginePhase.IDLE: {EnginePhase.INCOMING, EnginePhase.ACTIVE},  # ACTIVE via resume
    EnginePhase.INCOMING: {EnginePhase.ACTIVE, EnginePhase.IDLE},  # IDLE when all ring out
    EnginePhase.ACTIVE: {EnginePhase.DISPLAYING_MEDIA, EnginePhase.ENDED},
    EnginePhase.DISPLAYING_MEDIA: {EnginePhase.AWAITING_RESPONSE, EnginePhase.ENDED},
    EnginePhase.AWAITING_RESPONSE: {EnginePhase.APPLYING_EFFECTS, EnginePhase.ENDED},
    EnginePhase.APPLYING_EFFECTS: {EnginePhase.DISPLAYING_MEDIA, EnginePhase.ENDED},
    EnginePhase.ENDED: {EnginePhase.IDLE, EnginePhase.INCOMING},
}

# Phases during which a call is on the line
ON_LINE_PHASES = {
    EnginePhase.ACTIVE,
    EnginePhase.DISPLAYING_MEDIA,
    EnginePhase.AWAITING_RESPONSE,
    EnginePhase.APPLYING_EFFECTS,
}

TERMINAL_CALL_STATES = {CallState.ENDED, CallState.MISSED, CallState.SKIPPED}


class CallFlowError(Exception):
    """Error in call-flow processing."""
    pass


class InvalidPhaseError(CallFlowError):
    """Attempted phase transition not allowed from the current phase."""
    def __init__(self, current: EnginePhase, attempted: EnginePhase):
        self.current = current
        self.attempted = attempted
        super().__init__(
            f"Cannot move to {attempted.value} during {current.value} phase."
        )


@dataclass
class CallRecord:
    """Runtime bookkeeping for one offered call."""
    call: CallData
    state: CallState
    ring_deadline: float | None = None
    current_segment_id: str | None = None
    responses_taken: list[str] = field(default_factory=list)

    @property
    def call_id(self) -> str:
        return self.call.call_id


class CallFlowEngine:
    """
    State machine over call segments and responses.

    Args:
        flags: Flag store receiving response effects
        bus: Event bus for call-flow events (optional)
        evidence: Evidence ledger (optional; without one, evidence-gated
            responses are never available)
        trust: Trust graph receiving response trust deltas (optional)
        world: Clock supplying the in-game minute for flag timestamps
        config: Engine configuration (defaults from nightline.config)
        operator_id: Trust-graph id of the player
    """

    def __init__(
        self,
        flags: "FlagStore",
        bus: EventBus | None = None,
        evidence: "EvidenceLedger | None" = None,
        trust: "TrustGraph | None" = None,
        world: "WorldStateTracker | None" = None,
        config: EngineConfig | None = None,
        operator_id: str = "operator",
    ):
        self._flags = flags
        self._bus = bus
        self._evidence = evidence
        self._trust = trust
        self._world = world
        self._config: EngineConfig = {**DEFAULT_CONFIG, **(config or {})}
        self._operator_id = operator_id
        self._reset()

    def _reset(self) -> None:
        self._scenario: NightScenario | None = None
        self._calls: list[CallData] = []
        self._records: dict[str, CallRecord] = {}
        self._incoming: list[str] = []
        self._on_hold: list[str] = []
        self._current: CallRecord | None = None
        self._segment: CallSegment | None = None
        self._phase = EnginePhase.IDLE
        self._elapsed = 0.0
        self._media_deadline: float | None = None
        self._response_deadline: float | None = None
        self._dispatch_time: int | None = None
        self._history: list[str] = []
        self._completed: list[str] = []
        self._missed_count = 0
        self._auto_advances = 0
        self._complete_signalled = False

    # ─── Properties ──────────────────────────────────────────────

    @property
    def phase(self) -> EnginePhase:
        """Current phase of the line."""
        return self._phase

    @property
    def scenario(self) -> NightScenario | None:
        return self._scenario

    @property
    def current_call(self) -> CallData | None:
        return self._current.call if self._current else None

    @property
    def current_segment(self) -> CallSegment | None:
        return self._segment

    @property
    def incoming_calls(self) -> list[CallData]:
        return [self._records[c].call for c in self._incoming]

    @property
    def on_hold_calls(self) -> list[CallData]:
        return [self._records[c].call for c in self._on_hold]

    @property
    def held_calls(self) -> list[HeldCall]:
        """Parked calls with the segment each one resumes in."""
        return [
            HeldCall(call_id=c, segment_id=self._records[c].current_segment_id)
            for c in self._on_hold
        ]

    @property
    def call_history(self) -> list[str]:
        """Calls that ended after being answered, in order."""
        return list(self._history)

    @property
    def completed_call_ids(self) -> list[str]:
        """Calls in a terminal state (ended, missed, skipped), in order."""
        return list(self._completed)

    @property
    def missed_call_count(self) -> int:
        return self._missed_count

    @property
    def dispatch_time_minutes(self) -> int | None:
        """In-game minute of the first dispatch, or None."""
        return self._dispatch_time

    @property
    def schedulable_calls(self) -> list[CallData]:
        return list(self._calls)

    @property
    def all_calls_complete(self) -> bool:
        """Every schedulable call is ended, missed or skipped."""
        if self._scenario is None:
            return False
        return all(
            c.call_id in self._records and self._records[c.call_id].state in TERMINAL_CALL_STATES
            for c in self._calls
        )

    def call_state(self, call_id: str) -> CallState | None:
        record = self._records.get(call_id)
        return record.state if record else None

    def call_states(self) -> dict[str, CallState]:
        return {call_id: record.state for call_id, record in self._records.items()}

    def responses_taken(self, call_id: str) -> list[str]:
        record = self._records.get(call_id)
        return list(record.responses_taken) if record else []

    # ─── Scenario ────────────────────────────────────────────────

    def load_scenario(
        self,
        scenario: NightScenario,
        enabled_call_ids: Iterable[str] = (),
        disabled_call_ids: Iterable[str] = (),
    ) -> None:
        """
        Reset the engine and take the night's calls.

        Calls listed in the scenario's `disabled_call_ids` are skipped
        unless enabled here; `disabled_call_ids` here always win.
        """
        self._reset()
        self._scenario = scenario
        disabled = (set(scenario.disabled_call_ids) - set(enabled_call_ids)) | set(disabled_call_ids)
        self._calls = [c for c in scenario.calls if c.call_id not in disabled]
        logger.info(
            f"Loaded scenario {scenario.scenario_id}: "
            f"{len(self._calls)} calls ({len(scenario.calls) - len(self._calls)} disabled)"
        )

    def clear(self) -> None:
        self._reset()

    def poll_scheduled_calls(self, now_minutes: int) -> list[str]:
        """
        Offer every call whose time has come and that hasn't been offered.

        Returns the ids of calls that started ringing.
        """
        offered = []
        for call in self._calls:
            if call.call_id in self._records or call.incoming_time_minutes > now_minutes:
                continue
            if self.offer_call(call.call_id):
                offered.append(call.call_id)
        return offered

    def offer_call(self, call_id: str) -> bool:
        """
        Start a call ringing if its trigger conditions hold.

        A call whose triggers fail is skipped for the rest of the night,
        unless it is critical: critical calls always ring.
        """
        call = self._find_call(call_id)
        if call is None:
            logger.warning(f"Unknown or disabled call '{call_id}'")
            return False
        if call_id in self._records:
            logger.warning(f"Call '{call_id}' was already offered")
            return False

        if not evaluate_all(call.trigger_conditions, self._flags):
            if call.is_critical:
                logger.info(f"Critical call {call_id} rings despite unmet trigger conditions")
            else:
                self._skip_call(call)
                return False

        ring = call.ring_duration if call.ring_duration is not None else self._config["default_ring_seconds"]
        self._records[call_id] = CallRecord(
            call=call,
            state=CallState.INCOMING,
            ring_deadline=self._elapsed + ring,
        )
        self._incoming.append(call_id)
        if self._phase == EnginePhase.IDLE:
            self._transition(EnginePhase.INCOMING)
        logger.info(f"Incoming call: {call_id} from {call.caller_id or 'unknown'}")
        self._emit(EventType.INCOMING_CALL, call_id=call_id, caller_id=call.caller_id)
        return True

    # ─── Operator commands ───────────────────────────────────────

    def answer_call(self, call_id: str) -> bool:
        """Answer a ringing call, parking whatever call is on the line."""
        if call_id not in self._incoming:
            logger.warning(f"Cannot answer '{call_id}': not ringing")
            return False

        if self._current is not None:
            self.hold_call()

        record = self._records[call_id]
        self._incoming.remove(call_id)
        record.state = CallState.ACTIVE
        record.ring_deadline = None
        self._current = record
        self._auto_advances = 0
        self._transition(EnginePhase.ACTIVE)
        logger.info(f"Call answered: {call_id}")
        self._emit(EventType.CALL_STARTED, call_id=call_id, caller_id=record.call.caller_id)

        segment = record.call.get_start_segment()
        if segment is None:
            logger.warning(f"Call '{call_id}' has no start segment; ending it")
            self._finish_call(CallState.ENDED)
            return True

        self._enter_segment(segment)
        return True

    def hold_call(self) -> bool:
        """Park the current call. Its segment is kept for resume_call()."""
        if self._current is None:
            return False

        record = self._current
        record.state = CallState.ON_HOLD
        record.current_segment_id = self._segment.segment_id if self._segment else None
        self._on_hold.append(record.call_id)
        self._clear_line()
        self._transition(EnginePhase.ENDED)
        logger.info(f"Call on hold: {record.call_id}")
        self._emit(EventType.CALL_HELD, call_id=record.call_id, segment_id=record.current_segment_id)
        self._settle_line()
        return True

    def resume_call(self, call_id: str) -> bool:
        """Take a held call back, re-entering the segment it was parked in."""
        if call_id not in self._on_hold:
            logger.warning(f"Cannot resume '{call_id}': not on hold")
            return False

        if self._current is not None:
            self.hold_call()

        record = self._records[call_id]
        self._on_hold.remove(call_id)
        record.state = CallState.ACTIVE
        self._current = record
        self._auto_advances = 0
        self._transition(EnginePhase.ACTIVE)
        self._emit(EventType.CALL_RESUMED, call_id=call_id)

        segment = None
        if record.current_segment_id:
            segment = record.call.get_segment(record.current_segment_id)
        segment = segment or record.call.get_start_segment()
        if segment is None:
            self._finish_call(CallState.ENDED)
            return True
        self._enter_segment(segment)
        return True

    def end_call(self) -> bool:
        """
        Hang up on the current call.

        No further segment effects apply; the call's on-end flags do.
        """
        if self._current is None:
            return False
        logger.info(f"Operator ended call: {self._current.call_id}")
        self._finish_call(CallState.ENDED)
        return True

    def media_complete(self) -> bool:
        """Caller media finished; present the segment's responses."""
        if self._phase != EnginePhase.DISPLAYING_MEDIA:
            logger.warning(f"media_complete() ignored during {self._phase.value}")
            return False
        self._media_deadline = None
        self._present_responses()
        return True

    def get_available_responses(self) -> list[ResponseData]:
        """
        Responses the player may pick right now.

        A response is available if its conditions hold and its required
        evidence has been discovered. A segment whose own display
        conditions fail offers nothing.
        """
        if self._segment is None or self._phase not in (
            EnginePhase.DISPLAYING_MEDIA,
            EnginePhase.AWAITING_RESPONSE,
        ):
            return []
        if not evaluate_all(self._segment.conditions, self._flags):
            return []
        return [r for r in self._segment.responses if self._is_available(r)]

    def select_response(self, response_id: str) -> bool:
        """
        Process the player's response.

        Returns False, changing nothing, if the response is not
        currently selectable.
        """
        if self._phase != EnginePhase.AWAITING_RESPONSE:
            logger.warning(f"Cannot select '{response_id}' during {self._phase.value}")
            return False

        response = next((r for r in self.get_available_responses() if r.response_id == response_id), None)
        if response is None:
            logger.warning(
                f"Response '{response_id}' is not selectable in segment "
                f"'{self._segment.segment_id if self._segment else None}'"
            )
            return False

        self._auto_advances = 0
        self._process_response(response, reason="selected")
        return True

    def select_silence(self) -> bool:
        """The operator says nothing."""
        if self._phase != EnginePhase.AWAITING_RESPONSE:
            logger.warning(f"Cannot stay silent during {self._phase.value}")
            return False
        self._auto_advances = 0
        self._process_response(self._fallback_response(prefer_timeout=False), reason="silence")
        return True

    def tick(self, delta_seconds: float) -> None:
        """
        Advance engine time and fire any deadlines that passed.

        Order: ring-outs, then media completion, then response timeout.
        """
        if delta_seconds < 0:
            raise ValueError("delta_seconds must not be negative")
        self._elapsed += delta_seconds

        for call_id in list(self._incoming):
            record = self._records[call_id]
            if record.ring_deadline is not None and self._elapsed >= record.ring_deadline:
                self._miss_call(record)

        if (
            self._phase == EnginePhase.DISPLAYING_MEDIA
            and self._media_deadline is not None
            and self._elapsed >= self._media_deadline
        ):
            self.media_complete()

        if (
            self._phase == EnginePhase.AWAITING_RESPONSE
            and self._response_deadline is not None
            and self._elapsed >= self._response_deadline
        ):
            logger.info(f"Response time limit passed in segment '{self._segment.segment_id}'")
            self._auto_advances = 0
            self._process_response(self._fallback_response(prefer_timeout=True), reason="timeout")

    # ─── Save support ────────────────────────────────────────────

    def restore_progress(
        self,
        completed_call_ids: Iterable[str],
        missed_call_count: int = 0,
        dispatch_time_minutes: int | None = None,
        current_call_id: str | None = None,
        current_segment_id: str | None = None,
        call_outcomes: dict[str, CallState] | None = None,
        on_hold: Iterable[HeldCall] = (),
    ) -> None:
        """
        Rebuild call bookkeeping from a checkpoint on a freshly loaded engine.

        Completed calls get their saved terminal state (ended if none was
        saved) so they are not offered again; only ended calls go back
        into the call history. Held calls are parked again at their
        segments. If a call was on the line, it is re-entered at its
        saved segment.
        """
        if self._phase != EnginePhase.IDLE or self._records:
            raise CallFlowError("restore_progress() needs a freshly loaded scenario")

        outcomes = call_outcomes or {}
        for call_id in completed_call_ids:
            call = self._find_call(call_id)
            if call is None:
                continue
            state = outcomes.get(call_id, CallState.ENDED)
            if state not in TERMINAL_CALL_STATES:
                logger.warning(f"Saved call '{call_id}' has non-terminal state {state.value}; treating as ended")
                state = CallState.ENDED
            self._records[call_id] = CallRecord(call=call, state=state)
            self._completed.append(call_id)
            if state == CallState.ENDED:
                self._history.append(call_id)
        self._missed_count = missed_call_count
        self._dispatch_time = dispatch_time_minutes

        for held in on_hold:
            call = self._find_call(held.call_id)
            if call is None or held.call_id in self._records:
                logger.warning(f"Saved held call '{held.call_id}' can't be restored")
                continue
            self._records[held.call_id] = CallRecord(
                call=call,
                state=CallState.ON_HOLD,
                current_segment_id=held.segment_id,
            )
            self._on_hold.append(held.call_id)

        if current_call_id:
            call = self._find_call(current_call_id)
            if call is None or current_call_id in self._records:
                logger.warning(f"Saved call '{current_call_id}' no longer exists")
                return
            record = CallRecord(call=call, state=CallState.ON_HOLD, current_segment_id=current_segment_id)
            self._records[current_call_id] = record
            self._on_hold.append(current_call_id)
            self.resume_call(current_call_id)

    # ─── Internals ───────────────────────────────────────────────

    def _find_call(self, call_id: str) -> CallData | None:
        return next((c for c in self._calls if c.call_id == call_id), None)

    def _transition(self, to: EnginePhase) -> None:
        """Transition to a new phase, enforcing valid transitions."""
        if to not in VALID_TRANSITIONS.get(self._phase, set()):
            raise InvalidPhaseError(self._phase, to)
        logger.debug(f"Phase {self._phase.value} -> {to.value}")
        self._phase = to

    def _is_available(self, response: ResponseData) -> bool:
        if not evaluate_all(response.conditions, self._flags):
            return False
        if response.required_evidence_ids:
            if self._evidence is None:
                return False
            return all(self._evidence.is_discovered(e) for e in response.required_evidence_ids)
        return True

    def _enter_segment(self, segment: CallSegment) -> None:
        record = self._current
        self._transition(EnginePhase.DISPLAYING_MEDIA)
        self._segment = segment
        record.current_segment_id = segment.segment_id
        self._response_deadline = None

        if self._evidence is not None:
            for evidence_id in segment.auto_discovered_evidence_ids:
                self._evidence.report_discovered(evidence_id)

        logger.debug(f"Segment {record.call_id}/{segment.segment_id}")
        self._emit(EventType.SEGMENT_CHANGED, call_id=record.call_id, segment_id=segment.segment_id)

        if segment.media_duration > 0:
            self._media_deadline = self._elapsed + segment.media_duration
        else:
            self._media_deadline = None
            self._present_responses()

    def _present_responses(self) -> None:
        self._transition(EnginePhase.AWAITING_RESPONSE)
        segment = self._segment
        available = self.get_available_responses()
        self._emit(
            EventType.RESPONSES_PRESENTED,
            call_id=self._current.call_id,
            segment_id=segment.segment_id,
            response_ids=[r.response_id for r in available],
        )

        if available:
            if segment.response_time_limit > 0:
                self._response_deadline = self._elapsed + segment.response_time_limit
            return

        # Nothing to pick: stand in a response so the segment can't stall
        if self._auto_advances >= self._config["max_auto_advance"]:
            logger.warning(
                f"Call '{self._current.call_id}' auto-advanced {self._auto_advances} times "
                f"without input; ending it at '{segment.segment_id}'"
            )
            self._finish_call(CallState.ENDED)
            return
        self._auto_advances += 1
        self._process_response(self._fallback_response(prefer_timeout=False), reason="auto")

    def _fallback_response(self, prefer_timeout: bool) -> ResponseData:
        """
        Response used when the player doesn't pick one.

        Timeouts prefer the segment's timeout response, silence prefers a
        silence response; either falls back to the other, then to a
        synthetic silence that follows the segment's default next id.
        """
        segment = self._segment
        timeout = segment.get_response(segment.timeout_response_id) if segment.timeout_response_id else None
        silence = next((r for r in segment.responses if r.is_silence), None)
        ordered = (timeout, silence) if prefer_timeout else (silence, timeout)
        for response in ordered:
            if response is not None:
                return response
        return ResponseData(
            response_id=SILENCE_RESPONSE_ID,
            is_silence=True,
            next_segment_id=segment.default_next_segment_id,
        )

    def _process_response(self, response: ResponseData, reason: str) -> None:
        """Apply one response's effects, then move on. Runs once per segment visit."""
        record = self._current
        segment = self._segment
        self._transition(EnginePhase.APPLYING_EFFECTS)
        self._response_deadline = None
        record.responses_taken.append(response.response_id)

        self._emit(
            EventType.RESPONSE_SELECTED,
            call_id=record.call_id,
            segment_id=segment.segment_id,
            response_id=response.response_id,
            reason=reason,
        )

        now = self._now()
        self._flags.set_flags(response.set_flags, now)
        self._flags.clear_flags(response.clear_flags)

        if response.is_dispatch_action:
            self._record_dispatch(now)

        if self._trust is not None:
            trust_reason = f"{record.call_id}/{response.response_id}"
            if response.trust_impact:
                target = record.call.caller_id or record.call_id
                self._trust.apply_delta(self._operator_id, target, response.trust_impact, trust_reason)
            for change in response.trust_changes:
                self._trust.apply_delta(change.from_id, change.to_id, change.delta, change.reason or trust_reason)

        if response.discovered_evidence_id and self._evidence is not None:
            self._evidence.report_discovered(response.discovered_evidence_id)

        if response.ends_call or response.next_segment_id is None:
            self._finish_call(CallState.ENDED)
            return

        next_segment = record.call.get_segment(response.next_segment_id)
        if next_segment is None:
            logger.warning(
                f"Segment '{response.next_segment_id}' not found in call '{record.call_id}'; ending call"
            )
            self._finish_call(CallState.ENDED)
            return

        self._enter_segment(next_segment)

    def _record_dispatch(self, now: int) -> None:
        if self._dispatch_time is not None:
            logger.debug(f"Dispatch already recorded at minute {self._dispatch_time}")
            return

        self._dispatch_time = now
        dispatch_flag = DEFAULT_DISPATCH_FLAG
        timing_flags = []
        if self._scenario is not None:
            dispatch_flag = self._scenario.end_state.victim_survival.dispatch_flag_id or DEFAULT_DISPATCH_FLAG
            timing_flags = self._scenario.dispatch_timing_flags

        self._flags.set_flag(dispatch_flag, now)
        for timing in timing_flags:
            if now <= timing.at_or_before_minutes:
                self._flags.set_flag(timing.flag_id, now)

        logger.info(f"Emergency dispatch recorded at minute {now}")
        self._emit(EventType.DISPATCH_RECORDED, time_minutes=now)

    def _finish_call(self, state: CallState) -> None:
        record = self._current
        record.state = state
        record.current_segment_id = self._segment.segment_id if self._segment else None
        self._flags.set_flags(record.call.on_end_set_flags, self._now())

        self._history.append(record.call_id)
        self._completed.append(record.call_id)
        self._clear_line()
        self._transition(EnginePhase.ENDED)
        logger.info(f"Call ended: {record.call_id} ({state.value})")
        self._emit(EventType.CALL_ENDED, call_id=record.call_id, state=state.value)
        self._settle_line()
        self._check_all_complete()

    def _skip_call(self, call: CallData) -> None:
        self._records[call.call_id] = CallRecord(call=call, state=CallState.SKIPPED)
        self._completed.append(call.call_id)
        logger.info(f"Call {call.call_id} skipped: trigger conditions not met")
        self._emit(EventType.CALL_SKIPPED, call_id=call.call_id)
        self._check_all_complete()

    def _miss_call(self, record: CallRecord) -> None:
        record.state = CallState.MISSED
        record.ring_deadline = None
        self._incoming.remove(record.call_id)
        self._completed.append(record.call_id)
        self._missed_count += 1
        self._flags.set_flags(record.call.on_missed_set_flags, self._now())
        logger.info(f"Missed call: {record.call_id}")
        self._emit(EventType.CALL_MISSED, call_id=record.call_id)
        if self._phase == EnginePhase.INCOMING and not self._incoming:
            self._transition(EnginePhase.IDLE)
        self._check_all_complete()

    def _clear_line(self) -> None:
        self._current = None
        self._segment = None
        self._media_deadline = None
        self._response_deadline = None

    def _settle_line(self) -> None:
        """Leave ENDED for whatever the line is now doing."""
        self._transition(EnginePhase.INCOMING if self._incoming else EnginePhase.IDLE)

    def _check_all_complete(self) -> None:
        if self._complete_signalled or not self.all_calls_complete:
            return
        self._complete_signalled = True
        logger.info("All calls complete")
        self._emit(EventType.ALL_CALLS_COMPLETE, missed_call_count=self._missed_count)

    def _now(self) -> int:
        return self._world.current_time_minutes if self._world is not None else 0

    def _emit(self, event_type: EventType, **data) -> None:
        if self._bus is not None:
            night_id = self._scenario.scenario_id if self._scenario else ""
            self._bus.emit(event_type, night_id=night_id, **data)
