"""Stable content hashes used as cache keys for stage outputs."""

from __future__ import annotations

import dataclasses
import hashlib
import json
from enum import Enum


def _encode(value):
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Cannot fingerprint value of type {type(value).__name__}")


def fingerprint(stage: str, *parts) -> str:
    """Hash a stage name plus its inputs and options.

    Inputs must be JSON-serializable, dataclasses, enums or sets. Key order in
    dicts does not affect the result.
    """
    payload = json.dumps([stage, *parts], sort_keys=True, default=_encode, ensure_ascii=False)
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
    return f"{stage}:{digest}"
