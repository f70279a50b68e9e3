"""Durable client-side session state.

Replaces the loose key/value entries the client used to survive restarts
with one explicit record that is loaded and saved as a whole.
"""

import datetime as _dt
import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field


class SessionState(BaseModel):
    anonymous_login_time: Optional[_dt.datetime] = Field(None, alias="anonymousLoginTime")
    anonymous_user_id: Optional[str] = Field(None, alias="anonymousUserId")
    dev_mode: bool = Field(False, alias="devMode")
    refresh_token: Optional[str] = Field(None, alias="refreshToken")

    class Config:
        populate_by_name = True

    def is_empty(self) -> bool:
        return self == SessionState()

    def clear_anonymous(self) -> None:
        self.anonymous_login_time = None
        self.anonymous_user_id = None


class SessionStateStore:
    """Reads and writes :class:`SessionState` as a small JSON file."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path).expanduser()

    def load(self) -> SessionState:
        if not self.path.exists():
            return SessionState()
        try:
            return SessionState.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logging.warning(f"Ignoring unreadable session state at {self.path}: {e}")
            return SessionState()

    def save(self, state: SessionState) -> None:
        if state.is_empty():
            self.clear()
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            state.model_dump_json(by_alias=True, exclude_none=True),
            encoding="utf-8",
        )

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
