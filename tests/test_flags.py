"""
Tests for the flag store.

Covers idempotent setting, category scores, mutual exclusion,
persistence export/import and snapshots.
"""

import pytest

from nightline.state.event_bus import EventType
from nightline.state.schema import FlagDefinition, FlagsDefinition, FlagState
from nightline.systems.flags import FlagStore


class TestInitialize:
    """Test FlagStore lifecycle."""

    def test_second_initialize_is_rejected(self, flags, flags_definition):
        """A second initialize without clear() changes nothing."""
        flags.set_flag("revealed_affair", 130)

        assert flags.initialize("night_other", flags_definition) is False
        assert flags.night_id == "night_test"
        assert flags.is_set("revealed_affair")

    def test_initialize_after_clear(self, flags, flags_definition):
        """clear() allows a fresh initialize with no flags set."""
        flags.set_flag("revealed_affair", 130)
        flags.clear()

        assert flags.initialize("night_other", flags_definition) is True
        assert flags.night_id == "night_other"
        assert not flags.is_set("revealed_affair")

    def test_clear_all_flags_keeps_definitions(self, flags, bus):
        """clear_all_flags() unsets flags and emits a cleared event for each."""
        flags.set_flags(["revealed_affair", "found_contradiction"])
        flags.clear_all_flags()

        assert flags.get_all_flags() == []
        assert flags.get_definition("revealed_affair") is not None
        cleared = [e.data["flag_id"] for e in bus.get_history(EventType.FLAG_CLEARED)]
        assert set(cleared) == {"revealed_affair", "found_contradiction"}


class TestSetFlag:
    """Test set_flag / clear_flag."""

    def test_set_and_query(self, flags):
        flags.set_flag("revealed_affair", 131)

        assert flags.is_set("revealed_affair")
        assert flags.get_flag_state("revealed_affair").set_time == 131

    def test_idempotent_score(self, flags):
        """Setting twice does not double-count the category score."""
        flags.set_flag("karen_confession", 140)
        flags.set_flag("karen_confession", 150)

        assert flags.is_set("karen_confession")
        assert flags.get_category_score("Disclosure") == 2

    def test_first_set_time_wins_by_default(self, flags):
        flags.set_flag("karen_confession", 140)
        flags.set_flag("karen_confession", 150)

        assert flags.get_flag_state("karen_confession").set_time == 140

    def test_refresh_set_time_when_configured(self, flags_definition):
        """With refresh_set_time, re-setting moves the timestamp."""
        store = FlagStore(refresh_set_time=True)
        store.initialize("night_test", flags_definition)
        store.set_flag("karen_confession", 140)
        store.set_flag("karen_confession", 150)

        assert store.get_flag_state("karen_confession").set_time == 150
        assert store.get_category_score("Disclosure") == 2

    def test_set_returns_whether_changed(self, flags):
        assert flags.set_flag("revealed_affair") is True
        assert flags.set_flag("revealed_affair") is False

    def test_empty_id_rejected(self, flags):
        assert flags.set_flag("") is False
        assert flags.get_all_flags() == []

    def test_undefined_flag_contributes_nothing(self, flags):
        """Flags outside the table can be set but weigh 0."""
        flags.set_flag("mystery_flag", 125)

        assert flags.is_set("mystery_flag")
        assert flags.get_scores()["Disclosure"] == 0

    def test_clear_flag(self, flags):
        flags.set_flag("revealed_affair")
        assert flags.clear_flag("revealed_affair") is True
        assert not flags.is_set("revealed_affair")
        assert flags.get_category_score("Disclosure") == 0

    def test_clear_unset_flag_is_noop(self, flags, bus):
        assert flags.clear_flag("revealed_affair") is False
        assert bus.get_history(EventType.FLAG_CLEARED) == []

    def test_set_after_clear_uses_new_time(self, flags):
        flags.set_flag("revealed_affair", 130)
        flags.clear_flag("revealed_affair")
        flags.set_flag("revealed_affair", 160)

        assert flags.get_flag_state("revealed_affair").set_time == 160

    def test_events_emitted(self, flags, bus):
        """Setting a weighted flag emits flag and score events."""
        flags.set_flag("karen_confession", 140)

        set_events = bus.get_history(EventType.FLAG_SET)
        assert [e.data["flag_id"] for e in set_events] == ["karen_confession"]
        score_events = bus.get_history(EventType.SCORE_CHANGED)
        assert score_events[-1].data == {"category": "Disclosure", "score": 2}
        assert set_events[0].night_id == "night_test"


class TestCategoryScore:
    """Test get_category_score."""

    def test_sum_of_weights(self, flags):
        flags.set_flags(["shared_medical_history", "revealed_affair", "karen_confession"])

        assert flags.get_category_score("Disclosure") == 4

    def test_negative_weights(self, flags):
        flags.set_flags(["told_to_wait", "lied_to_caller"])

        assert flags.get_category_score("Reassurance") == -1

    def test_unknown_category_is_zero(self, flags):
        flags.set_flag("revealed_affair")

        assert flags.get_category_score("Nonexistent") == 0

    def test_undefined_flags_count_zero(self, flags):
        flags.set_flags(["revealed_affair", "improvised_flag"])

        assert flags.get_category_score("Disclosure") == 1

    def test_duplicate_definition_counted_once(self, bus):
        """The first definition of a repeated flag id decides its weight."""
        table = FlagsDefinition(flag_definitions=[
            FlagDefinition(flag_id="revealed_affair", category="Disclosure", weight=2),
            FlagDefinition(flag_id="revealed_affair", category="Disclosure", weight=5),
        ])
        store = FlagStore(bus)
        store.initialize("night_test", table)
        store.set_flag("revealed_affair")

        assert store.get_category_score("Disclosure") == 2

    def test_definitions_by_category(self, flags_definition):
        found = [d.flag_id for d in flags_definition.get_flags_by_category("Reassurance")]

        assert found == ["told_to_wait", "calmed_caller", "lied_to_caller"]

    def test_set_flags_by_category(self, flags):
        flags.set_flags(["revealed_affair", "found_contradiction", "karen_confession"])

        assert sorted(flags.get_set_flags_by_category("Disclosure")) == ["karen_confession", "revealed_affair"]


class TestMutualExclusion:
    """Test exclusion cascades through the store."""

    def test_rule_cancels_target(self, flags):
        flags.set_flag("told_to_wait", 130)
        flags.set_flag("urged_leave", 135)

        assert flags.is_set("urged_leave")
        assert not flags.is_set("told_to_wait")

    def test_cascade_does_not_recurse(self, flags):
        """Cancelling told_to_wait doesn't re-trigger its own rule on urged_leave."""
        flags.set_flag("told_to_wait")
        flags.set_flag("urged_leave")

        assert flags.is_set("urged_leave")

    def test_definition_cancels_flags(self, flags):
        """Per-flag cancels_flags merge with the rule table."""
        flags.set_flag("urged_leave")
        flags.set_flag("calmed_caller")

        assert not flags.is_set("urged_leave")
        assert flags.get_category_score("Escalation") == 0

    def test_cancel_emits_cleared_and_score(self, flags, bus):
        flags.set_flag("told_to_wait")
        flags.set_flag("urged_leave")

        cleared = bus.get_history(EventType.FLAG_CLEARED)
        assert cleared[-1].data == {"flag_id": "told_to_wait", "reason": "cancelled_by:urged_leave"}
        categories = {e.data["category"] for e in bus.get_history(EventType.SCORE_CHANGED)}
        assert {"Reassurance", "Escalation"} <= categories

    def test_resetting_set_flag_does_not_cascade(self, flags):
        """An idempotent re-set applies no exclusion."""
        flags.set_flag("urged_leave")
        flags.set_flag("told_to_wait")  # cancels urged_leave
        flags.set_flag("told_to_wait")

        assert flags.is_set("told_to_wait")
        assert not flags.is_set("urged_leave")


class TestPersistence:
    """Test export, import and snapshots."""

    def test_get_all_flags(self, flags):
        flags.set_flag("revealed_affair", 130)
        flags.set_flag("found_contradiction", 150)
        flags.set_flag("urged_leave", 151)
        flags.set_flag("calmed_caller", 152)  # cancels urged_leave

        exported = {f.flag_id: f.set_time for f in flags.get_all_flags()}
        assert exported == {"revealed_affair": 130, "found_contradiction": 150, "calmed_caller": 152}

    def test_persistent_subset(self, flags):
        flags.set_flags(["karen_confession", "revealed_affair", "emergency_dispatched"], 150)

        persistent = sorted(f.flag_id for f in flags.get_persistent_flags())
        assert persistent == ["emergency_dispatched", "karen_confession"]

    def test_persistent_flags_carry_origin(self, flags):
        flags.set_flag("karen_confession", 150)

        assert flags.get_persistent_flags()[0].origin_night_id == "night_test"

    def test_round_trip_into_next_night(self, flags, flags_definition):
        """Exported persistent flags come back pre-set with their time."""
        flags.set_flag("karen_confession", 150)
        exported = flags.get_persistent_flags()

        next_night = FlagStore()
        next_night.initialize("night_next", flags_definition)
        assert next_night.import_persistent_flags(exported) == 1

        state = next_night.get_flag_state("karen_confession")
        assert state.is_set and state.set_time == 150
        assert state.origin_night_id == "night_test"
        assert next_night.get_category_score("Disclosure") == 2

    def test_import_skips_exclusion(self, flags):
        """Imported flags don't trigger mutual exclusion."""
        flags.set_flag("told_to_wait")
        flags.import_persistent_flags([FlagState(flag_id="urged_leave", set_time=10)])

        assert flags.is_set("told_to_wait")
        assert flags.is_set("urged_leave")

    def test_snapshot_restore(self, flags):
        flags.set_flags(["revealed_affair", "karen_confession"], 140)
        snapshot = flags.snapshot()
        flags.clear_flag("revealed_affair")
        flags.set_flag("found_contradiction")

        flags.restore(snapshot)

        assert flags.is_set("revealed_affair")
        assert not flags.is_set("found_contradiction")
        assert flags.get_category_score("Disclosure") == 3

    def test_snapshot_is_a_copy(self, flags):
        flags.set_flag("revealed_affair", 140)
        snapshot = flags.snapshot()
        snapshot[0].set_time = 999

        assert flags.get_flag_state("revealed_affair").set_time == 140


class TestKnownReferences:
    """Test is_known_flag / is_known_category used by conditions."""

    def test_defined_flag_known(self, flags):
        assert flags.is_known_flag("revealed_affair")
        assert not flags.is_known_flag("never_defined")

    def test_recorded_undefined_flag_known(self, flags):
        flags.set_flag("never_defined")
        assert flags.is_known_flag("never_defined")

    def test_categories(self, flags):
        assert flags.is_known_category("Disclosure")
        assert not flags.is_known_category("Nonexistent")

    def test_empty_table_knows_everything(self):
        store = FlagStore()
        store.initialize("n", FlagsDefinition())

        assert store.is_known_flag("anything")
        assert store.is_known_category("Anything")

    @pytest.mark.parametrize("category", ["Event", "Reassurance"])
    def test_declared_category_without_set_flags(self, flags, category):
        """Declared categories are known even with nothing set."""
        assert flags.is_known_category(category)
