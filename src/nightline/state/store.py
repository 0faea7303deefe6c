"""
Save storage abstraction.

Separates persistence from the narrative core for testability. Two kinds
of data are stored: cross-night progress (results, persistent flags) and
mid-night checkpoints, one per night.
"""

import json
import logging
from pathlib import Path
from typing import Iterable, Protocol, runtime_checkable

from pydantic import ValidationError

from .schema import CrossNightState, FlagState, NightResult, NightSaveState

logger = logging.getLogger(__name__)


@runtime_checkable
class SaveStore(Protocol):
    """
    Storage interface for nightline saves.

    Implementations:
    - JsonSaveStore: File-based persistence (production)
    - MemorySaveStore: In-memory storage (testing)
    """

    def load_persistent_flags(self, night_id: str) -> list[FlagState]:
        """Persistent flags carried into `night_id` from other nights."""
        ...

    def save_persistent_flags(self, night_id: str, flags: list[FlagState]) -> None:
        """Replace the persistent flags exported by `night_id`."""
        ...

    def save_night_result(self, result: NightResult) -> CrossNightState:
        """Record a finished night and drop its mid-night checkpoint."""
        ...

    def load_cross_night(self) -> CrossNightState:
        ...

    def save_cross_night(self, state: CrossNightState) -> None:
        ...

    def save_night_state(self, state: NightSaveState) -> None:
        ...

    def load_night_state(self, night_id: str) -> NightSaveState | None:
        ...

    def delete_night_state(self, night_id: str) -> bool:
        ...

    def reset(self) -> None:
        """Forget all progress (new game)."""
        ...


# ─── Shared rules ────────────────────────────────────────────────

def flags_for_night(state: CrossNightState, night_id: str) -> list[FlagState]:
    """Persistent flags from every night except `night_id` itself."""
    return [f.model_copy() for f in state.persistent_flags if f.origin_night_id != night_id]


def merge_persistent_flags(
    state: CrossNightState,
    night_id: str,
    flags: Iterable[FlagState],
) -> None:
    """Swap in `night_id`'s exported flags, keeping other nights' flags."""
    kept = [f for f in state.persistent_flags if f.origin_night_id != night_id]
    kept_ids = {f.flag_id for f in kept}
    exported = []
    for flag in flags:
        if not flag.is_set or flag.flag_id in kept_ids:
            continue
        exported.append(flag.model_copy(update={"origin_night_id": night_id}))
    state.persistent_flags = kept + exported


def record_night_result(state: CrossNightState, result: NightResult) -> None:
    state.record_result(result)
    state.current_night_index = len(state.completed_nights)


# ─── Implementations ─────────────────────────────────────────────

class JsonSaveStore:
    """
    File-based save storage using JSON.

    Features:
    - Automatic backup on save
    - Corrupt files are logged and treated as missing
    """

    CROSS_NIGHT_FILE = "cross_night.json"

    def __init__(self, saves_dir: Path | str = "saves"):
        self.saves_dir = Path(saves_dir)
        self.saves_dir.mkdir(parents=True, exist_ok=True)

    def _night_file(self, night_id: str) -> Path:
        return self.saves_dir / f"checkpoint_{night_id}.json"

    def _write(self, path: Path, payload: str) -> None:
        # Backup previous save
        if path.exists():
            backup = path.with_suffix(".json.bak")
            backup.write_text(path.read_text(encoding="utf-8"), encoding="utf-8")
        path.write_text(payload, encoding="utf-8")

    def load_cross_night(self) -> CrossNightState:
        path = self.saves_dir / self.CROSS_NIGHT_FILE
        if not path.exists():
            return CrossNightState()
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return CrossNightState.model_validate(data)
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Unreadable cross-night save {path}: {e}")
            return CrossNightState()

    def save_cross_night(self, state: CrossNightState) -> None:
        self._write(self.saves_dir / self.CROSS_NIGHT_FILE, state.model_dump_json(indent=2))

    def load_persistent_flags(self, night_id: str) -> list[FlagState]:
        return flags_for_night(self.load_cross_night(), night_id)

    def save_persistent_flags(self, night_id: str, flags: list[FlagState]) -> None:
        state = self.load_cross_night()
        merge_persistent_flags(state, night_id, flags)
        self.save_cross_night(state)

    def save_night_result(self, result: NightResult) -> CrossNightState:
        state = self.load_cross_night()
        record_night_result(state, result)
        self.save_cross_night(state)
        self.delete_night_state(result.night_id)
        return state

    def save_night_state(self, state: NightSaveState) -> None:
        self._write(self._night_file(state.night_id), state.model_dump_json(indent=2))

    def load_night_state(self, night_id: str) -> NightSaveState | None:
        path = self._night_file(night_id)
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return NightSaveState.model_validate(data)
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Unreadable night save {path}: {e}")
            return None

    def delete_night_state(self, night_id: str) -> bool:
        path = self._night_file(night_id)
        if path.exists():
            path.unlink()
            return True
        return False

    def reset(self) -> None:
        for f in [*self.saves_dir.glob("*.json"), *self.saves_dir.glob("*.json.bak")]:
            if f.name.startswith("."):
                continue  # Config lives alongside saves
            f.unlink()


class MemorySaveStore:
    """
    In-memory save storage for testing.

    Stores serialized copies so callers can't mutate saved state.
    """

    def __init__(self):
        self._cross_night: str | None = None
        self._nights: dict[str, str] = {}

    def load_cross_night(self) -> CrossNightState:
        if self._cross_night is None:
            return CrossNightState()
        return CrossNightState.model_validate_json(self._cross_night)

    def save_cross_night(self, state: CrossNightState) -> None:
        self._cross_night = state.model_dump_json()

    def load_persistent_flags(self, night_id: str) -> list[FlagState]:
        return flags_for_night(self.load_cross_night(), night_id)

    def save_persistent_flags(self, night_id: str, flags: list[FlagState]) -> None:
        state = self.load_cross_night()
        merge_persistent_flags(state, night_id, flags)
        self.save_cross_night(state)

    def save_night_result(self, result: NightResult) -> CrossNightState:
        state = self.load_cross_night()
        record_night_result(state, result)
        self.save_cross_night(state)
        self.delete_night_state(result.night_id)
        return state

    def save_night_state(self, state: NightSaveState) -> None:
        self._nights[state.night_id] = state.model_dump_json()

    def load_night_state(self, night_id: str) -> NightSaveState | None:
        data = self._nights.get(night_id)
        return NightSaveState.model_validate_json(data) if data else None

    def delete_night_state(self, night_id: str) -> bool:
        return self._nights.pop(night_id, None) is not None

    def reset(self) -> None:
        self._cross_night = None
        self._nights.clear()
