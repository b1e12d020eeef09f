"""
Agent name sanitization.

Agents are referenced in templates by a sanitized form of their display
name. Both sides of a rename are sanitized before matching.
"""

import re

_APOSTROPHES = re.compile(r"['’`]")
_NON_WORD = re.compile(r"[^A-Za-z0-9_]+")
_UNDERSCORES = re.compile(r"_{2,}")


def sanitize_name(name: str) -> str:
    """
    Turn a display name into a reference token.

    ``"Bob's Helper"`` becomes ``"Bobs_Helper"``. Case is preserved.
    """
    if not name:
        return ""
    token = _APOSTROPHES.sub("", name.strip())
    token = _NON_WORD.sub("_", token)
    token = _UNDERSCORES.sub("_", token)
    return token.strip("_")


def build_reference_pattern(sanitized: str) -> "re.Pattern[str]":
    """Whole-word pattern for a sanitized name."""
    if not sanitized:
        raise ValueError("Cannot build a reference pattern for an empty name")
    return re.compile(rf"\b{re.escape(sanitized)}\b")
