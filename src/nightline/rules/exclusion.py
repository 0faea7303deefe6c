"""
Mutual exclusion as a pure function.

Setting some flags cancels others ("reassured the caller" cancels
"escalated"). The rule is applied once to a snapshot of flag states and
returns the new states; cancellations never trigger further rules.
"""

from dataclasses import dataclass, field

from ..state.schema import FlagState


@dataclass
class ExclusionResult:
    """New flag states plus the ids that were cancelled, in order."""
    states: dict[str, FlagState]
    cancelled: list[str] = field(default_factory=list)


def apply_mutual_exclusion(
    states: dict[str, FlagState],
    flag_id: str,
    cancels: list[str],
) -> ExclusionResult:
    """
    Clear every set flag in `cancels` after `flag_id` was set.

    The input mapping is not modified. A flag never cancels itself, and
    flags that are not currently set are left alone.

    Args:
        states: Current flag states keyed by id
        flag_id: The flag that was just set
        cancels: Flags that `flag_id` cancels

    Returns:
        ExclusionResult with the updated copy and cancelled ids
    """
    updated = dict(states)
    cancelled: list[str] = []

    for target in cancels:
        if target == flag_id or target in cancelled:
            continue
        state = updated.get(target)
        if state is None or not state.is_set:
            continue
        updated[target] = state.model_copy(update={"is_set": False})
        cancelled.append(target)

    return ExclusionResult(states=updated, cancelled=cancelled)
