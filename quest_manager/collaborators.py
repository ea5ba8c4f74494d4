"""Boundary collaborators injected into the quest manager.

Each collaborator is a Protocol; the host supplies the implementation.

    Identity     : who is acting, and who holds the GM role.
    ConfirmPrompt: yes/no question asked before destructive operations.
    Notifier     : user-visible info/warning/error messages.

Simple implementations are provided for hosts and tests:

    StaticIdentity    : fixed current user and GM set.
    AutoConfirm       : always answers the same way.
    LogNotifier       : forwards messages to the logging module.
    RecordingNotifier : keeps every message; remembers the last error raised.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Literal, Protocol

logger = logging.getLogger(__name__)

Level = Literal["info", "warn", "error"]


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------

class Identity(Protocol):
    @property
    def current_user_id(self) -> str: ...

    def is_gm(self, user_id: str) -> bool: ...


class ConfirmPrompt(Protocol):
    async def confirm(self, title: str, message: str) -> bool: ...


class Notifier(Protocol):
    def info(self, message: str) -> None: ...

    def warn(self, message: str, error: Exception | None = None) -> None: ...

    def error(self, message: str, error: Exception | None = None) -> None: ...


# ---------------------------------------------------------------------------
# Implementations
# ---------------------------------------------------------------------------

class StaticIdentity:
    def __init__(self, current_user_id: str, gm_user_ids: Iterable[str] = ()) -> None:
        self._current = current_user_id
        self._gms = set(gm_user_ids)

    @property
    def current_user_id(self) -> str:
        return self._current

    def is_gm(self, user_id: str) -> bool:
        return user_id in self._gms


class AutoConfirm:
    def __init__(self, answer: bool = True) -> None:
        self.answer = answer

    async def confirm(self, title: str, message: str) -> bool:
        logger.debug("auto-confirm %r -> %s", title, self.answer)
        return self.answer


class LogNotifier:
    def info(self, message: str) -> None:
        logger.info(message)

    def warn(self, message: str, error: Exception | None = None) -> None:
        logger.warning(message)

    def error(self, message: str, error: Exception | None = None) -> None:
        logger.error(message)


@dataclass
class Notice:
    level: Level
    message: str
    error: Exception | None = None


class RecordingNotifier:
    def __init__(self) -> None:
        self.notices: list[Notice] = []
        self.last_error: Exception | None = None

    def info(self, message: str) -> None:
        self.notices.append(Notice("info", message))

    def warn(self, message: str, error: Exception | None = None) -> None:
        self.notices.append(Notice("warn", message, error))
        self.last_error = error or self.last_error

    def error(self, message: str, error: Exception | None = None) -> None:
        self.notices.append(Notice("error", message, error))
        self.last_error = error or self.last_error

    def messages(self, level: Level | None = None) -> list[str]:
        return [n.message for n in self.notices if level is None or n.level == level]
