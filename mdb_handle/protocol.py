"""
Reply types and reply classification.

Encoding and decoding happen in pymongo; this module only decides whether
a decoded reply document represents a logical failure.
"""

from dataclasses import dataclass, field
from typing import Any

from .exceptions import CommandFailed


@dataclass
class Reply:
    """
    Result of a query against a namespace.

    Commands produce a single document in ``docs``; collection queries
    produce zero or more.
    """

    docs: list[dict[str, Any]] = field(default_factory=list)
    cursor_id: int = 0
    starting_from: int = 0

    @property
    def first(self) -> dict[str, Any] | None:
        """The first result document, or None for an empty reply."""
        return self.docs[0] if self.docs else None


class Protocol:
    """Classifies reply documents returned by the server."""

    def command_error(self, doc: dict[str, Any] | None) -> CommandFailed | None:
        """
        Classify a command reply.

        Args:
            doc: First document of a command reply

        Returns:
            CommandFailed when the reply is missing or ``ok`` is falsy,
            otherwise None
        """
        if doc is None:
            return CommandFailed("Command returned no reply document")
        if doc.get("ok"):
            return None
        return CommandFailed(
            doc.get("errmsg") or "Unknown command error",
            code=doc.get("code"),
            code_name=doc.get("codeName"),
            document=doc,
        )

    def write_error(self, doc: dict[str, Any] | None) -> CommandFailed | None:
        """
        Classify the reply of a write command (insert, update, delete).

        A write command can succeed as a command (``ok: 1``) while individual
        writes or the write concern failed.
        """
        if doc is None:
            return None
        messages = [
            f"Write error at index {err.get('index')}: {err.get('errmsg')}"
            for err in doc.get("writeErrors") or []
        ]
        concern_error = doc.get("writeConcernError")
        if concern_error:
            messages.append(f"Write concern error: {concern_error.get('errmsg')}")
        if not messages:
            return None
        first = (doc.get("writeErrors") or [concern_error])[0]
        return CommandFailed(
            "\n".join(messages),
            code=first.get("code"),
            code_name=first.get("codeName"),
            document=doc,
        )
