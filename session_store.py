import json
from pathlib import Path
from typing import Any

from logs import get_logger


SESSION_KEY = "ftad_session"
SESSION_FIELDS = ("username", "sdo", "school_name", "email")

logger = get_logger(__name__)


class SessionStore:
    """Operator session persisted to a small JSON file.

    The file plays the part of browser local storage: one document holding
    the serialized session under ``ftad_session``. Load it once at start-up,
    replace it on login or account update, clear it on logout. There is no
    expiry.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._session: dict[str, str] | None = None

    @property
    def current(self) -> dict[str, str] | None:
        return dict(self._session) if self._session else None

    def load(self) -> dict[str, str] | None:
        self._session = None
        if not self.path.exists():
            return None
        try:
            stored = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("session_unreadable", path=str(self.path), error=str(exc))
            return None
        raw = stored.get(SESSION_KEY) if isinstance(stored, dict) else None
        if isinstance(raw, dict) and raw.get("username"):
            self._session = clean_session(raw)
        return self.current

    def save(self, session: dict[str, Any]) -> dict[str, str]:
        self._session = clean_session(session)
        stored = self._read_other_keys() if self.path.exists() else {}
        stored[SESSION_KEY] = self._session
        self._write(stored)
        return dict(self._session)

    def clear(self) -> None:
        self._session = None
        if self.path.exists():
            stored = self._read_other_keys()
            if stored:
                self._write(stored)
            else:
                self.path.unlink()

    def _read_other_keys(self) -> dict[str, Any]:
        try:
            stored = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return {}
        if not isinstance(stored, dict):
            return {}
        stored.pop(SESSION_KEY, None)
        return stored

    def _write(self, payload: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(payload, ensure_ascii=True, indent=2), encoding="utf-8")


def clean_session(raw: dict[str, Any]) -> dict[str, str]:
    return {field: str(raw.get(field) or "") for field in SESSION_FIELDS}
