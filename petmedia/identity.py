"""
Conversation identity.

A two-party thread is addressed by a deterministic id built from its
participants, so "message this user" always lands in the same thread no
matter who starts it.
"""

from petmedia.errors import ValidationError

THREAD_ID_SEPARATOR = "_"


def derive_thread_id(user_a: str, user_b: str) -> str:
    """
    Map an unordered pair of user ids to the canonical thread id.

    Args:
        user_a: First participant
        user_b: Second participant

    Returns:
        The two ids sorted lexicographically and joined with ``_``

    Raises:
        ValidationError: If either id is empty or both ids are the same user
    """
    if not user_a or not user_b:
        raise ValidationError("both participant ids are required")
    if user_a == user_b:
        raise ValidationError("a thread needs two distinct participants")

    first, second = sorted((user_a, user_b))
    return f"{first}{THREAD_ID_SEPARATOR}{second}"
