from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ConversationKey:
    """Identity of one companion conversation (companion, model, user)."""

    companion_name: str
    model_name: str
    user_id: str | None


def derive_key(key: ConversationKey) -> str:
    """Return the Redis list key for ``key``.

    Plain ``-`` concatenation, no escaping: identities that themselves contain
    ``-`` can collide. Kept as-is so existing history lists stay addressable.
    """
    return f"{key.companion_name}-{key.model_name}-{key.user_id}"


def is_valid_key(key: ConversationKey | None) -> bool:
    if key is None:
        return False
    return all(
        isinstance(part, str) and part != ""
        for part in (key.companion_name, key.model_name, key.user_id)
    )


__all__ = ["ConversationKey", "derive_key", "is_valid_key"]
