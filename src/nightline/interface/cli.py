"""
Command-line interface for nightline.

Commands:
    nightline validate SCENARIO...        Check scenario cross-references
    nightline play SCENARIO... [options]  Play one or more nights
    nightline status [--saves DIR]        Show cross-night progress

`play` answers ringing calls automatically. Responses come from
--choices (in order), --auto (first available), or an interactive prompt.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Callable

from rich.prompt import Prompt

from ..config import load_config
from ..state.event_bus import EventBus
from ..state.loader import ScenarioLoadError, load_scenario, validate_scenario
from ..state.schema import NightResult, ResponseData
from ..state.store import JsonSaveStore
from ..systems.callflow import EnginePhase
from ..systems.night import NightController, NightSession
from ..systems.world import format_time
from .renderer import (
    THEME,
    attach_transcript,
    console,
    show_ending,
    show_issues,
    show_progress,
    show_responses,
    show_scores,
)

logger = logging.getLogger(__name__)

# Operator commands accepted in place of a response id
WAIT, SILENCE, HOLD, END = "wait", "silence", "hold", "end"
COMMANDS = [WAIT, SILENCE, HOLD, END]

# Chooser: (session, available responses) -> response id, command, or None to wait
Chooser = Callable[[NightSession, list[ResponseData]], str | None]


def scripted_chooser(choices: list[str]) -> Chooser:
    """Hand out choices in order; wait once they run out."""
    queue = list(choices)

    def choose(session: NightSession, available: list[ResponseData]) -> str | None:
        return queue.pop(0) if queue else None

    return choose


def auto_chooser(session: NightSession, available: list[ResponseData]) -> str | None:
    return available[0].response_id if available else None


def prompt_chooser(session: NightSession, available: list[ResponseData]) -> str | None:
    console.print(f"[{THEME['dim']}]{session.clock.formatted_time}[/{THEME['dim']}]")
    show_responses(available)
    by_number = {str(i): r.response_id for i, r in enumerate(available, 1)}
    answer = Prompt.ask(
        "Respond",
        choices=list(by_number) + [r.response_id for r in available] + COMMANDS,
        default=WAIT,
        show_choices=False,
    )
    return by_number.get(answer, answer)


def play_night(
    session: NightSession,
    choose: Chooser,
    step_seconds: float = 1.0,
    max_ticks: int = 100_000,
) -> NightResult:
    """
    Drive a started session until it ends.

    Ringing calls are answered and held calls resumed as soon as the
    line is free. Each prompt gets one choice; anything that isn't
    accepted lets time pass instead.
    """
    ticks = 0
    while session.result is None:
        engine = session.engine

        if engine.phase == EnginePhase.INCOMING:
            engine.answer_call(engine.incoming_calls[0].call_id)
            continue
        if engine.phase == EnginePhase.IDLE and engine.on_hold_calls:
            engine.resume_call(engine.on_hold_calls[0].call_id)
            continue

        if engine.phase == EnginePhase.AWAITING_RESPONSE:
            pick = choose(session, engine.get_available_responses())
            if pick == SILENCE and engine.select_silence():
                continue
            if pick == HOLD and engine.hold_call():
                continue
            if pick == END and engine.end_call():
                continue
            if pick and pick not in COMMANDS and engine.select_response(pick):
                continue

        session.tick(step_seconds)
        ticks += 1
        if ticks >= max_ticks:
            logger.warning(f"Stopping {session.night_id} after {ticks} ticks")
            return session.finish()

    return session.result


def _load_all(paths: list[str]):
    scenarios = []
    for path in paths:
        try:
            scenarios.append(load_scenario(path))
        except ScenarioLoadError as e:
            console.print(f"[{THEME['danger']}]{e}[/{THEME['danger']}]")
            return None
    return scenarios


def cmd_validate(args) -> int:
    failed = False
    for path in args.scenarios:
        try:
            scenario = load_scenario(path, validate=False)
        except ScenarioLoadError as e:
            console.print(f"[{THEME['danger']}]{e}[/{THEME['danger']}]")
            failed = True
            continue
        issues = validate_scenario(scenario)
        show_issues(scenario.scenario_id, issues)
        failed = failed or any(i.severity == "warning" for i in issues)
    return 1 if failed else 0


def cmd_play(args, config) -> int:
    scenarios = _load_all(args.scenarios)
    if scenarios is None:
        return 1

    if args.choices:
        chooser = scripted_chooser(args.choices)
    elif args.auto:
        chooser = auto_chooser
    else:
        chooser = prompt_chooser

    bus = EventBus()
    attach_transcript(bus, verbose=args.verbose)
    controller = NightController(scenarios, JsonSaveStore(args.saves), bus=bus, config=config)

    session = controller.start_new_game() if args.new else controller.continue_game()
    if session is None:
        console.print(f"[{THEME['dim']}]All nights already complete. Use --new to start over.[/{THEME['dim']}]")
        return 0

    while session is not None:
        console.print(
            f"\n[bold {THEME['primary']}]{session.scenario.title or session.night_id}[/bold {THEME['primary']}] "
            f"[{THEME['dim']}]{format_time(session.scenario.start_time_minutes)} - "
            f"{format_time(session.scenario.end_time_minutes)}[/{THEME['dim']}]"
        )
        result = play_night(session, chooser, step_seconds=args.step)
        if args.verbose:
            show_scores(session.flags)
        show_ending(result, session.resolver.get_ending_title(result.ending_id))
        controller.end_current_night()
        session = None if controller.all_nights_complete else controller.current_session
    return 0


def cmd_status(args) -> int:
    show_progress(JsonSaveStore(args.saves).load_cross_night())
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(prog="nightline", description="nightline - night operator narrative engine")
    parser.add_argument("--saves", default=None, help="Save directory (default from config, else ./saves)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show flags, segments and debug logs")
    sub = parser.add_subparsers(dest="command", required=True)

    p_validate = sub.add_parser("validate", help="Check scenario files")
    p_validate.add_argument("scenarios", nargs="+")

    p_play = sub.add_parser("play", help="Play one or more nights in order")
    p_play.add_argument("scenarios", nargs="+")
    p_play.add_argument("--choices", nargs="+", help="Response ids (or wait/silence/hold/end) in order")
    p_play.add_argument("--auto", action="store_true", help="Always pick the first available response")
    p_play.add_argument("--new", action="store_true", help="Discard saves and start from the first night")
    p_play.add_argument("--step", type=float, default=1.0, help="Real seconds per tick")

    sub.add_parser("status", help="Show saved progress")

    args = parser.parse_args(argv)

    saves_dir = Path(args.saves) if args.saves else Path("saves")
    config = load_config(saves_dir)
    if args.saves is None:
        args.saves = config.get("saves_dir", "saves")

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else config.get("log_level", "WARNING"),
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.command == "validate":
        return cmd_validate(args)
    if args.command == "play":
        return cmd_play(args, config)
    return cmd_status(args)


if __name__ == "__main__":
    sys.exit(main())
