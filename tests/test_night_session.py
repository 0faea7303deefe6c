"""
Tests for NightSession and NightController.

Play the bundled nights end to end through an in-memory store.
"""

import pytest

from nightline.state.event_bus import EventBus, EventType
from nightline.state.schema import CallState
from nightline.systems.callflow import EnginePhase
from nightline.systems.night import NightController, NightSession, applicable_effects


# Karen call, start to dispatch, with the bracelet contradiction found
EXPOSED_PATH = ["ask_whats_wrong", "ask_medication", "press_affair", "listen", "point_out_bracelet", "send_help"]


def run_until(session, predicate, step=1.0, limit=5000):
    for _ in range(limit):
        if predicate():
            return
        session.tick(step)
    raise AssertionError("condition never reached")


def answer_karen(session):
    run_until(session, lambda: session.engine.phase == EnginePhase.INCOMING)
    session.engine.answer_call("call_karen")
    session.engine.media_complete()


def take(session, response_ids):
    """Pick responses in order, skipping any media wait."""
    engine = session.engine
    for response_id in response_ids:
        if engine.phase == EnginePhase.DISPLAYING_MEDIA:
            engine.media_complete()
        assert engine.select_response(response_id), response_id


def play_out(session, step=1.0):
    run_until(session, lambda: session.result is not None, step=step)
    return session.result


@pytest.fixture
def session(night_01, memory_store):
    s = NightSession(night_01, memory_store)
    s.start()
    return s


class TestNightOne:
    """Full playthroughs of the first night."""

    def test_exposed_and_saved(self, session, memory_store):
        answer_karen(session)
        take(session, EXPOSED_PATH)

        result = play_out(session)

        assert result.end_state == "exposed"
        assert result.ending_id == "ending_truth_save"
        assert result.victim_survived
        assert result.dispatch_time_minutes <= 170
        assert memory_store.load_cross_night().ending_by_night == {"night_01": "ending_truth_save"}

    def test_dispatch_timing_flags(self, session):
        answer_karen(session)
        take(session, EXPOSED_PATH)

        assert session.flags.is_set("dispatch_time_0241")
        assert session.flags.is_set("dispatch_time_0249")

    def test_no_intervention_is_absorbed(self, session):
        """Karen rings out; the neighbor's call never triggers."""
        result = play_out(session, step=2.0)

        assert result.ending_id == "ending_absorbed"
        assert session.engine.missed_call_count == 1
        assert session.flags.is_set("karen_call_missed")
        assert session.engine.call_state("call_neighbor").value == "skipped"

    def test_neighbor_call_follows_affair(self, session):
        answer_karen(session)
        take(session, ["ask_whats_wrong", "ask_medication", "press_affair", "listen", "let_it_go", "hang_up"])

        run_until(session, lambda: session.engine.incoming_calls)
        assert session.engine.incoming_calls[0].call_id == "call_neighbor"

    def test_time_up_ends_night(self, night_01, memory_store):
        """With a call on hold, the night ends when the clock runs out."""
        session = NightSession(night_01, memory_store)
        session.start()
        answer_karen(session)
        session.engine.hold_call()

        result = play_out(session, step=10.0)

        assert session.clock.is_time_up
        assert result.night_id == "night_01"

    def test_tick_before_start(self, night_01, memory_store):
        with pytest.raises(RuntimeError):
            NightSession(night_01, memory_store).tick(1.0)

    def test_finish_is_idempotent(self, session, memory_store):
        first = session.finish()

        assert session.finish() is first
        assert len(session.bus.get_history(EventType.NIGHT_ENDED)) == 1
        assert session.clock.ending_id == first.ending_id

    def test_start_twice(self, session):
        assert session.start() is False


class TestCheckpoints:
    """Mid-night saves."""

    def test_autosave_on_call_end(self, session, memory_store):
        answer_karen(session)
        take(session, EXPOSED_PATH)

        saved = memory_store.load_night_state("night_01")
        assert saved.completed_call_ids == ["call_karen"]
        assert saved.dispatch_time_minutes == session.engine.dispatch_time_minutes

    def test_restore_mid_call(self, night_01, memory_store, session):
        answer_karen(session)
        take(session, ["calm_her", "ask_medication"])
        session.save_checkpoint()
        minute = session.clock.current_time_minutes

        resumed = NightSession(night_01, memory_store)
        assert resumed.start() is True

        assert resumed.clock.current_time_minutes == minute
        assert resumed.engine.current_call.call_id == "call_karen"
        assert resumed.engine.current_segment.segment_id == "affair"
        assert resumed.flags.is_set("calmed_caller")
        assert resumed.flags.is_set("shared_medical_history")

    def test_restore_keeps_discovered_evidence(self, night_01, memory_store, session):
        """Evidence-gated responses survive a save at the contradiction."""
        answer_karen(session)
        take(session, ["ask_whats_wrong", "ask_medication", "press_affair", "listen"])
        session.save_checkpoint()

        resumed = NightSession(night_01, memory_store)
        resumed.start()

        assert resumed.engine.current_segment.segment_id == "contradiction"
        assert resumed.evidence.is_discovered("ev_medical_bracelet")
        assert [r.response_id for r in resumed.engine.get_available_responses()] == [
            "point_out_bracelet",
            "let_it_go",
        ]

    def test_autosave_keeps_held_call(self, night_01, memory_store, session):
        """Karen, parked to take the neighbor's call, is still parked after a reload."""
        answer_karen(session)
        take(session, ["ask_whats_wrong", "ask_medication", "press_affair"])
        run_until(session, lambda: session.engine.incoming_calls)
        session.engine.answer_call("call_neighbor")
        take(session, ["take_report"])

        saved = memory_store.load_night_state("night_01")
        assert [(h.call_id, h.segment_id) for h in saved.on_hold] == [("call_karen", "confession")]

        resumed = NightSession(night_01, memory_store)
        resumed.start()

        assert resumed.engine.call_state("call_karen") == CallState.ON_HOLD
        assert resumed.engine.call_state("call_neighbor") == CallState.ENDED
        assert resumed.engine.call_history == ["call_neighbor"]
        assert resumed.engine.incoming_calls == []

        assert resumed.engine.resume_call("call_karen") is True
        assert resumed.engine.current_segment.segment_id == "confession"
        assert not resumed.flags.is_set("karen_call_missed")

    def test_checkpoint_records_outcomes(self, session):
        answer_karen(session)
        take(session, EXPOSED_PATH)

        state = session.save_checkpoint()

        assert state.call_outcomes == {"call_karen": CallState.ENDED}
        assert state.discovered_evidence_ids == ["ev_medical_bracelet", "ev_timeline"]

    def test_start_without_resume_ignores_checkpoint(self, night_01, memory_store, session):
        answer_karen(session)
        session.save_checkpoint()

        fresh = NightSession(night_01, memory_store)

        assert fresh.start(resume=False) is False
        assert fresh.engine.current_call is None

    def test_finish_drops_checkpoint(self, session, memory_store):
        session.save_checkpoint()
        session.finish()

        assert memory_store.load_night_state("night_01") is None


class TestCrossNight:
    """Persistent flags and night effects."""

    def _finish_night_one(self, night_01, memory_store, path):
        session = NightSession(night_01, memory_store)
        session.start()
        answer_karen(session)
        take(session, path)
        return session.finish()

    def test_persistent_flags_and_effect(self, night_01, night_02, memory_store):
        self._finish_night_one(night_01, memory_store, EXPOSED_PATH)

        night = NightSession(night_02, memory_store)
        night.start()

        assert night.flags.is_set("karen_confession")
        assert night.flags.get_flag_state("karen_confession").origin_night_id == "night_01"
        assert night.flags.is_set("karen_called_back")
        assert [e.source_night_id for e in night.applied_effects] == ["night_01"]
        assert "call_karen_followup" in [c.call_id for c in night.engine.schedulable_calls]

    def test_effect_needs_required_flag(self, night_01, night_02, memory_store):
        """Siding with the husband never earns Karen's trust."""
        self._finish_night_one(night_01, memory_store, ["ask_whats_wrong", "ask_medication", "side_husband", "hang_up"])

        night = NightSession(night_02, memory_store)
        night.start()

        assert not night.flags.is_set("karen_called_back")
        assert night.applied_effects == []
        assert night.engine.schedulable_calls == []

    def test_night_two_ending(self, night_01, night_02, memory_store):
        self._finish_night_one(night_01, memory_store, EXPOSED_PATH)
        night = NightSession(night_02, memory_store)
        night.start()

        assert night.finish().ending_id == "ending_n2_steady"

    def test_effects_wait_for_source_night(self, night_02, memory_store):
        night = NightSession(night_02, memory_store)
        night.start()

        assert applicable_effects(night_02.night_effects, memory_store.load_cross_night(), night.flags) == []


class TestNightController:
    """Multi-night progression."""

    def test_progression(self, night_01, night_02, memory_store):
        bus = EventBus()
        controller = NightController([night_01, night_02], memory_store, bus=bus)

        session = controller.start_new_game()
        assert session.night_id == "night_01"

        controller.end_current_night()
        assert controller.current_night_index == 1
        assert controller.current_session.night_id == "night_02"
        assert memory_store.load_cross_night().current_night_index == 1

        controller.end_current_night()
        assert controller.all_nights_complete
        assert controller.current_scenario is None
        assert [e.night_id for e in bus.get_history(EventType.NIGHT_ENDED)] == ["night_01", "night_02"]

    def test_continue_game(self, night_01, night_02, memory_store):
        NightController([night_01, night_02], memory_store).start_new_game().finish()

        controller = NightController([night_01, night_02], memory_store)

        assert controller.continue_game().night_id == "night_02"

    def test_continue_when_done(self, night_01, memory_store):
        controller = NightController([night_01], memory_store)
        controller.start_new_game()
        controller.end_current_night()

        assert NightController([night_01], memory_store).continue_game() is None

    def test_new_game_resets(self, night_01, night_02, memory_store):
        controller = NightController([night_01, night_02], memory_store)
        controller.start_new_game()
        controller.end_current_night()

        controller.start_new_game()

        assert memory_store.load_cross_night().completed_nights == []
        assert controller.current_night_index == 0

    def test_old_session_detached(self, night_01, night_02, memory_store):
        bus = EventBus()
        controller = NightController([night_01, night_02], memory_store, bus=bus)
        controller.start_new_game()
        controller.end_current_night()

        assert bus.listener_count(EventType.CALL_ENDED) == 1

    def test_trust_carries_over(self, night_01, night_02, memory_store):
        controller = NightController([night_01, night_02], memory_store)
        session = controller.start_new_game()
        answer_karen(session)
        take(session, EXPOSED_PATH)
        controller.end_current_night()

        assert controller.current_session.trust is session.trust
        assert controller.current_session.evidence is not session.evidence

    def test_needs_scenarios(self, memory_store):
        with pytest.raises(ValueError):
            NightController([], memory_store)
