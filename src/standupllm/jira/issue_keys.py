"""Normalise issue keys coming from chat text or model output."""

import re

_LEADING_MENTIONS = re.compile(r"^@+")
_LEADING_NOISE = re.compile(r"^[^A-Za-z0-9]+")
_TRAILING_NOISE = re.compile(r"[^A-Za-z0-9-]+$")
_ISSUE_KEY = re.compile(r"[A-Z][A-Z0-9]+-\d+")


def sanitize_issue_key(value: str | None) -> str | None:
    """Extract a canonical issue key such as ``PROJ-123`` from free text.

    Handles the usual chat shapes: ``@PROJ-123``, ``PROJ-123.``, ``(proj-123)``,
    markdown emphasis and surrounding whitespace.

    Args:
        value: Raw text supplied by the user or the model

    Returns:
        The upper-cased issue key, or None if no key is present
    """
    raw = str(value or "").strip()
    cleaned = _LEADING_MENTIONS.sub("", raw)
    cleaned = _LEADING_NOISE.sub("", cleaned)
    cleaned = _TRAILING_NOISE.sub("", cleaned).upper()

    match = _ISSUE_KEY.search(cleaned)
    return match.group(0) if match else None
