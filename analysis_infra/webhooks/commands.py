"""
Bot identity and comment command grammar.

Commands are case-insensitive, <bot> is any configured alias:
    stop   = @<bot>\\s+stop\\b
    review = @<bot>\\b   (any following text)
Stop wins when both match.
"""

import re
from collections.abc import Iterable
from enum import Enum
from typing import Any


class CommentCommand(str, Enum):
    STOP = "stop"
    REVIEW = "review"


def is_bot_user(user: dict[str, Any] | None, bot_logins: Iterable[str] = ()) -> bool:
    """True for GitHub bot accounts and bot-shaped logins."""
    if not user:
        return False
    login = (user.get("login") or "").lower()
    user_type = (user.get("type") or "").lower()
    return (
        user_type == "bot"
        or login.endswith("[bot]")
        or login.startswith("bot-")
        or login.endswith("-bot")
        or login == "bot"
        or login in {name.lower() for name in bot_logins}
    )


class CommandParser:
    def __init__(self, aliases: Iterable[str]):
        names = sorted({a.lower() for a in aliases if a}, key=len, reverse=True)
        if not names:
            raise ValueError("At least one bot alias is required")
        alternation = "|".join(re.escape(name) for name in names)
        self._stop = re.compile(rf"@(?:{alternation})\s+stop\b", re.IGNORECASE)
        self._mention = re.compile(rf"@(?:{alternation})\b", re.IGNORECASE)

    def mentions_bot(self, body: str | None) -> bool:
        return bool(body) and self._mention.search(body) is not None

    def parse(self, body: str | None) -> CommentCommand | None:
        if not body:
            return None
        if self._stop.search(body):
            return CommentCommand.STOP
        if self._mention.search(body):
            return CommentCommand.REVIEW
        return None
