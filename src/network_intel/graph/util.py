from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import datetime, timezone

_WS_RE = re.compile(r"\s+")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def from_iso(s: str | None) -> datetime | None:
    if not s:
        return None
    return datetime.fromisoformat(s)


def normalize_name(name: str) -> str:
    """Identity key for an entity name: case-insensitive, whitespace collapsed."""
    return _WS_RE.sub(" ", name).strip().lower()


def batched(it: Iterable, batch_size: int) -> Iterable[list]:
    batch: list = []
    for x in it:
        batch.append(x)
        if len(batch) >= batch_size:
            yield batch
            batch = []
    if batch:
        yield batch
