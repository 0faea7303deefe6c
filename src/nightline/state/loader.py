"""
Scenario loading and validation.

Scenarios are authored as YAML (or JSON) and validated in two passes:

1. Structure: pydantic model validation. Failures raise ScenarioLoadError,
   since there is nothing sensible to play.
2. Content: cross-references (segment ids, flag ids, categories, end
   states). Problems are collected as ScenarioIssue records and logged.
   The engine degrades around them at runtime: a dangling segment
   reference ends the call, an unknown flag or category never matches.
"""

import json
import logging
from collections import Counter
from dataclasses import dataclass
from pathlib import Path

import yaml
from pydantic import ValidationError

from .schema import (
    CallData,
    Condition,
    FlagCondition,
    NightScenario,
    ScoreCondition,
)

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).parent.parent / "data"


class ScenarioLoadError(Exception):
    """Scenario file could not be read or is structurally invalid."""
    def __init__(self, path: Path | str, reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Cannot load scenario {path}: {reason}")


@dataclass
class ScenarioIssue:
    """A content problem found by validate_scenario()."""
    location: str  # e.g. "calls[call_karen].segments[intro]"
    message: str
    severity: str = "warning"  # "warning" or "info"

    def __str__(self) -> str:
        return f"{self.severity.upper()} {self.location}: {self.message}"


def bundled_scenario_path(name: str = "night_01") -> Path:
    """Path of a scenario shipped with the package."""
    return DATA_DIR / f"{name}.yaml"


def parse_scenario(data: dict, source: str = "<data>") -> NightScenario:
    """Validate raw scenario data into a NightScenario."""
    if not isinstance(data, dict):
        raise ScenarioLoadError(source, "top level must be a mapping")
    try:
        return NightScenario.model_validate(data)
    except ValidationError as e:
        raise ScenarioLoadError(source, str(e)) from e


def load_scenario(path: Path | str, validate: bool = True) -> NightScenario:
    """
    Load a scenario from a .yaml/.yml or .json file.

    Args:
        path: Scenario file
        validate: Run content validation and log any issues

    Raises:
        ScenarioLoadError: Unreadable file, bad syntax, or schema mismatch
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ScenarioLoadError(path, str(e)) from e

    try:
        if path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ScenarioLoadError(path, f"syntax error: {e}") from e

    scenario = parse_scenario(data, source=str(path))

    if validate:
        for issue in validate_scenario(scenario):
            if issue.severity == "warning":
                logger.warning(f"{scenario.scenario_id}: {issue}")
            else:
                logger.info(f"{scenario.scenario_id}: {issue}")

    logger.info(f"Loaded scenario {scenario.scenario_id} from {path}")
    return scenario


# ─── Validation ──────────────────────────────────────────────────

def _duplicates(ids: list[str]) -> list[str]:
    return sorted(i for i, n in Counter(ids).items() if n > 1)


class _Validator:
    """Collects issues for one scenario."""

    def __init__(self, scenario: NightScenario):
        self.scenario = scenario
        self.issues: list[ScenarioIssue] = []
        flags = scenario.flags
        self.flag_ids = {d.flag_id for d in flags.flag_definitions}
        self.categories = set(flags.categories) | {d.category for d in flags.flag_definitions}
        self.end_states = scenario.end_state.declared_end_states()
        # Flags the engine sets on its own
        self.engine_flags = {scenario.end_state.victim_survival.dispatch_flag_id}
        self.engine_flags |= {t.flag_id for t in scenario.dispatch_timing_flags}

    def warn(self, location: str, message: str) -> None:
        self.issues.append(ScenarioIssue(location, message, "warning"))

    def info(self, location: str, message: str) -> None:
        self.issues.append(ScenarioIssue(location, message, "info"))

    def check_flag_ref(self, location: str, flag_id: str) -> None:
        if self.flag_ids and flag_id not in self.flag_ids:
            self.warn(location, f"unknown flag '{flag_id}'")

    def check_conditions(self, location: str, conditions: list[Condition]) -> None:
        for condition in conditions:
            if isinstance(condition, FlagCondition):
                self.check_flag_ref(location, condition.flag_id)
            elif isinstance(condition, ScoreCondition) and condition.category not in self.categories:
                self.warn(location, f"unknown category '{condition.category}' (never matches)")

    def check_set_flags(self, location: str, flag_ids: list[str]) -> None:
        for flag_id in flag_ids:
            if self.flag_ids and flag_id not in self.flag_ids | self.engine_flags:
                self.info(location, f"sets undefined flag '{flag_id}' (weight 0)")

    def run(self) -> list[ScenarioIssue]:
        self.check_flags()
        self.check_end_states()
        self.check_calls()
        for timing in self.scenario.dispatch_timing_flags:
            self.check_flag_ref("dispatch_timing_flags", timing.flag_id)
        return self.issues

    def check_flags(self) -> None:
        flags = self.scenario.flags
        for dup in _duplicates([d.flag_id for d in flags.flag_definitions]):
            self.warn("flags", f"duplicate flag id '{dup}'")

        declared = set(flags.categories)
        for definition in flags.flag_definitions:
            if declared and definition.category not in declared:
                self.warn(f"flags[{definition.flag_id}]", f"undeclared category '{definition.category}'")
            for target in definition.cancels_flags:
                self.check_flag_ref(f"flags[{definition.flag_id}].cancels_flags", target)

        for rule in flags.mutual_exclusion_rules:
            location = f"mutual_exclusion_rules[{rule.when_flag_set}]"
            self.check_flag_ref(location, rule.when_flag_set)
            for target in rule.cancel_flags:
                self.check_flag_ref(location, target)

    def check_end_states(self) -> None:
        end_state = self.scenario.end_state
        strict = bool(end_state.end_states)

        if not end_state.default_end_state:
            self.warn("end_state", "no default_end_state")
        for dup in _duplicates(end_state.end_states):
            self.warn("end_state.end_states", f"duplicate end state '{dup}'")

        for i, condition in enumerate(end_state.conditions):
            location = f"end_state.conditions[{i}:{condition.end_state}]"
            if strict and condition.end_state not in self.end_states:
                self.warn(location, f"undeclared end state '{condition.end_state}' (never matches)")
            self.check_conditions(location, list(condition.flag_conditions))
            self.check_conditions(location, list(condition.score_conditions))

        ending_ids = {e.ending_id for e in end_state.endings}
        for dup in _duplicates([m.end_state for m in end_state.ending_mappings]):
            self.warn("end_state.ending_mappings", f"duplicate mapping for '{dup}'")
        for mapping in end_state.ending_mappings:
            location = f"end_state.ending_mappings[{mapping.end_state}]"
            if strict and mapping.end_state not in self.end_states:
                self.warn(location, f"undeclared end state '{mapping.end_state}'")
            if ending_ids:
                for ending_id in (
                    mapping.ending_id_if_survived,
                    mapping.ending_id_if_died,
                    mapping.ending_id_regardless,
                ):
                    if ending_id and ending_id not in ending_ids:
                        self.info(location, f"ending '{ending_id}' has no display entry")

        mapped = {m.end_state for m in end_state.ending_mappings}
        for name in sorted(self.end_states - mapped):
            self.info("end_state.ending_mappings", f"'{name}' has no mapping (uses default ending)")

    def check_calls(self) -> None:
        calls = self.scenario.calls
        call_ids = {c.call_id for c in calls}
        for dup in _duplicates([c.call_id for c in calls]):
            self.warn("calls", f"duplicate call id '{dup}'")
        for call_id in self.scenario.disabled_call_ids:
            if call_id not in call_ids:
                self.warn("disabled_call_ids", f"unknown call '{call_id}'")
        for effect in self.scenario.night_effects:
            for call_id in effect.enable_call_ids + effect.disable_call_ids:
                if call_id not in call_ids:
                    self.warn(f"night_effects[{effect.source_night_id}]", f"unknown call '{call_id}'")
        for call in calls:
            self.check_call(call)

    def check_call(self, call: CallData) -> None:
        base = f"calls[{call.call_id}]"
        segment_ids = {s.segment_id for s in call.segments}

        if not call.segments:
            self.warn(base, "no segments (call ends as soon as it is answered)")
        for dup in _duplicates([s.segment_id for s in call.segments]):
            self.warn(base, f"duplicate segment id '{dup}'")
        if call.start_segment_id and call.start_segment_id not in segment_ids:
            self.warn(base, f"start segment '{call.start_segment_id}' not found")

        self.check_conditions(f"{base}.trigger_conditions", call.trigger_conditions)
        self.check_set_flags(f"{base}.on_end_set_flags", call.on_end_set_flags)
        self.check_set_flags(f"{base}.on_missed_set_flags", call.on_missed_set_flags)

        for segment in call.segments:
            location = f"{base}.segments[{segment.segment_id}]"
            response_ids = [r.response_id for r in segment.responses]
            for dup in _duplicates(response_ids):
                self.warn(location, f"duplicate response id '{dup}'")
            if segment.timeout_response_id and segment.timeout_response_id not in response_ids:
                self.warn(location, f"timeout response '{segment.timeout_response_id}' not found")
            if segment.default_next_segment_id and segment.default_next_segment_id not in segment_ids:
                self.warn(location, f"default next segment '{segment.default_next_segment_id}' not found (ends call)")
            self.check_conditions(location, segment.conditions)

            for response in segment.responses:
                r_location = f"{location}.responses[{response.response_id}]"
                if response.next_segment_id and response.next_segment_id not in segment_ids:
                    self.warn(r_location, f"next segment '{response.next_segment_id}' not found (ends call)")
                self.check_conditions(r_location, response.conditions)
                self.check_set_flags(r_location, response.set_flags)
                for flag_id in response.clear_flags:
                    self.check_flag_ref(r_location, flag_id)


def validate_scenario(scenario: NightScenario) -> list[ScenarioIssue]:
    """
    Check a scenario's cross-references.

    Returns every issue found; never raises.
    """
    return _Validator(scenario).run()
