from __future__ import annotations

import json
import logging
from pathlib import Path

from core.models import UserPreferences
from core.user_preferences import normalize_user_preferences, preferences_to_dict

logger = logging.getLogger(__name__)

USER_PREFERENCES_DIR = "user-preferences"


class PreferenceStore:
    """One JSON file of :class:`UserPreferences` per user."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root) / USER_PREFERENCES_DIR

    def _path(self, user_id: int) -> Path:
        return self.root / f"{user_id}.json"

    def read(self, user_id: int) -> UserPreferences:
        path = self._path(user_id)
        if not path.exists():
            return UserPreferences()

        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError, TypeError, ValueError):
            logger.warning("Failed to read user preferences for %s", user_id, exc_info=True)
            return UserPreferences()

        return normalize_user_preferences(raw)

    def write(self, user_id: int, preferences: UserPreferences) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        path = self._path(user_id)
        tmp_path = path.with_suffix(f"{path.suffix}.tmp")
        tmp_path.write_text(
            json.dumps(preferences_to_dict(preferences), ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
        tmp_path.replace(path)

    def clear(self, user_id: int) -> None:
        path = self._path(user_id)
        if path.exists():
            path.unlink()
