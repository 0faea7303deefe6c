"""
Display helpers for the nightline CLI.

Handles theming, issue tables, call transcripts and ending panels.
"""

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..state.event_bus import EventBus, EventType, NarrativeEvent
from ..state.loader import ScenarioIssue
from ..state.schema import CrossNightState, NightResult, ResponseData
from ..systems.flags import FlagStore
from ..systems.world import format_time


# Shared console instance
console = Console()

THEME = {
    "primary": "steel_blue",
    "secondary": "grey70",
    "warning": "dark_goldenrod",
    "danger": "dark_red",
    "accent": "cyan",
    "dim": "dim",
}


def show_issues(scenario_id: str, issues: list[ScenarioIssue]) -> None:
    """Print validation issues as a table."""
    if not issues:
        console.print(f"[{THEME['accent']}]{scenario_id}: no issues[/{THEME['accent']}]")
        return

    table = Table(title=f"[bold {THEME['primary']}]{scenario_id}[/bold {THEME['primary']}]")
    table.add_column("Severity", style=THEME["dim"])
    table.add_column("Location", style=THEME["secondary"])
    table.add_column("Problem")
    for issue in issues:
        color = THEME["warning"] if issue.severity == "warning" else THEME["dim"]
        table.add_row(f"[{color}]{issue.severity}[/{color}]", issue.location, issue.message)
    console.print(table)


def show_responses(responses: list[ResponseData]) -> None:
    for i, response in enumerate(responses, 1):
        text = response.display_text or response.response_id
        marker = " · dispatch" if response.is_dispatch_action else ""
        console.print(
            f"  [{THEME['accent']}]{i}.[/{THEME['accent']}] {text} "
            f"[{THEME['dim']}]({response.response_id}){marker}[/{THEME['dim']}]"
        )


def show_scores(flags: FlagStore) -> None:
    table = Table(show_header=False, box=None)
    table.add_column("Category", style=THEME["dim"])
    table.add_column("Score", style=THEME["secondary"])
    for category, score in flags.get_scores().items():
        table.add_row(category, str(score))
    console.print(table)


def show_ending(result: NightResult, title: str) -> None:
    """Final panel for a night."""
    dispatch = (
        format_time(result.dispatch_time_minutes)
        if result.dispatch_time_minutes is not None
        else "never"
    )
    body = (
        f"[bold]{title}[/bold]\n\n"
        f"[{THEME['dim']}]End state:[/{THEME['dim']}] {result.end_state}\n"
        f"[{THEME['dim']}]Ending:[/{THEME['dim']}] {result.ending_id}\n"
        f"[{THEME['dim']}]Dispatch:[/{THEME['dim']}] {dispatch}\n"
        f"[{THEME['dim']}]Victim survived:[/{THEME['dim']}] {'yes' if result.victim_survived else 'no'}"
    )
    color = THEME["primary"] if result.victim_survived else THEME["danger"]
    console.print(Panel(body, title=result.night_id, border_style=color))


def show_progress(state: CrossNightState) -> None:
    """Cross-night save summary."""
    if not state.night_results:
        console.print(f"[{THEME['dim']}]No nights completed[/{THEME['dim']}]")
        return

    table = Table(title=f"[bold {THEME['primary']}]Progress[/bold {THEME['primary']}]")
    table.add_column("Night")
    table.add_column("End state", style=THEME["secondary"])
    table.add_column("Ending")
    table.add_column("Survived", style=THEME["dim"])
    for result in state.night_results:
        table.add_row(result.night_id, result.end_state, result.ending_id, "yes" if result.victim_survived else "no")
    console.print(table)
    console.print(
        f"[{THEME['dim']}]Next night index: {state.current_night_index} | "
        f"persistent flags: {', '.join(f.flag_id for f in state.persistent_flags) or 'none'}[/{THEME['dim']}]"
    )


def attach_transcript(bus: EventBus, verbose: bool = False) -> None:
    """Print call-flow events as they happen."""

    def line(text: str, style: str = THEME["dim"]):
        def handler(event: NarrativeEvent) -> None:
            console.print(f"[{style}]{text.format(**event.data)}[/{style}]")
        return handler

    bus.on(EventType.INCOMING_CALL, line("☎  Incoming: {call_id}", THEME["accent"]))
    bus.on(EventType.CALL_STARTED, line("── Answered {call_id} ──", THEME["primary"]))
    bus.on(EventType.CALL_MISSED, line("✗  Missed: {call_id}", THEME["danger"]))
    bus.on(EventType.CALL_ENDED, line("── {call_id} {state} ──", THEME["primary"]))
    bus.on(EventType.DISPATCH_RECORDED, line("Units dispatched at minute {time_minutes}", THEME["warning"]))
    bus.on(EventType.RESPONSE_SELECTED, line("   > {response_id} ({reason})"))
    if verbose:
        bus.on(EventType.SEGMENT_CHANGED, line("   <{segment_id}>"))
        bus.on(EventType.FLAG_SET, line("   + {flag_id}"))
        bus.on(EventType.FLAG_CLEARED, line("   - {flag_id}"))
