"""Base model classes and mixins for taskboard models."""

from __future__ import annotations

import itertools
import os
import secrets
import socket
import time
from datetime import datetime, timezone

from sqlalchemy import DateTime, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"
_BLOCK = 36 ** 4
_counter = itertools.count(secrets.randbelow(_BLOCK))


def _to_base36(value: int, width: int) -> str:
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    text = "".join(reversed(digits)) or "0"
    return text.rjust(width, "0")[-width:]


def _fingerprint() -> str:
    host_total = sum(ord(ch) for ch in socket.gethostname()) + 36
    return _to_base36(os.getpid(), 2) + _to_base36(host_total, 2)


_FINGERPRINT = _fingerprint()


def new_cuid() -> str:
    """Return a 25-character collision-resistant id (``c`` + 24 base36 chars).

    Layout: timestamp (8) + counter (4) + host/process fingerprint (4) + random (8).
    """
    timestamp = _to_base36(int(time.time() * 1000), 8)
    counter = _to_base36(next(_counter) % _BLOCK, 4)
    random_block = _to_base36(secrets.randbelow(_BLOCK), 4) + _to_base36(secrets.randbelow(_BLOCK), 4)
    return f"c{timestamp}{counter}{_FINGERPRINT}{random_block}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class CuidMixin:
    """Adds a cuid primary key."""

    id: Mapped[str] = mapped_column(
        String(25),
        primary_key=True,
        default=new_cuid,
    )


class TimestampMixin:
    """Adds created_at / updated_at columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )
