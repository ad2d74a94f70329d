"""Provide utility helpers for ID ordering and validation."""

from __future__ import annotations

import re
from typing import Iterable, Mapping

from loguru import logger

_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def sorted_ids(mapping: Mapping[str, object]) -> list[str]:
    """Return mapping keys in canonical (lexical) processing order."""
    return sorted(mapping.keys())


def is_safe_id(value: str) -> bool:
    """Return True when `value` can be used as a single path component."""
    return bool(_SAFE_ID_RE.match(value or "")) and value not in {".", ".."}


def warn_on_mixed_id_widths(ids: Iterable[str], scope: str) -> bool:
    """Log a warning when sibling IDs differ in length.

    Lexical ordering only matches numeric intent for fixed-width IDs
    (`m01` ... `m10`); `m2` sorts after `m10`.

    Returns:
        True if a warning was emitted.
    """
    widths = {len(i) for i in ids}
    if len(widths) <= 1:
        return False
    logger.warning(
        "IDs under {} have mixed widths {}; lexical order may not match numeric order",
        scope or "root",
        sorted(widths),
    )
    return True
