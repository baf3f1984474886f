"""
Opaque cursor encoding for keyset pagination
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

from .schemas import Cursor, Post

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def cursor_for(post: Optional[Post]) -> Optional[Cursor]:
    if not post:
        return None
    return Cursor(created_at=post.created_at, id=post.id)


def encode_cursor(cursor: Optional[Cursor]) -> Optional[str]:
    if not cursor:
        return None
    created_at = cursor.created_at
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    # Integer microseconds keep the tail timestamp exact
    us = (created_at - EPOCH) // timedelta(microseconds=1)
    return f"{us}.{cursor.id}"


def decode_cursor(text: Optional[str]) -> Optional[Cursor]:
    """Parse ``<epoch_us>.<id>``; raises ValueError on malformed input"""
    if not text:
        return None
    us, sep, post_id = text.partition(".")
    if not sep or not post_id or not us.isdigit():
        raise ValueError(f"Invalid cursor: {text!r}")
    created_at = EPOCH + timedelta(microseconds=int(us))
    return Cursor(created_at=created_at, id=post_id)
