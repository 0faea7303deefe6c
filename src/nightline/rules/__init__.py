"""
Narrative rules as pure functions.

Condition evaluation and mutual exclusion live here, apart from the
stores they read, so they can be tested without a running night.
"""

from .conditions import compare, evaluate, evaluate_all, FlagReader
from .exclusion import apply_mutual_exclusion, ExclusionResult

__all__ = [
    "compare",
    "evaluate",
    "evaluate_all",
    "FlagReader",
    "apply_mutual_exclusion",
    "ExclusionResult",
]
