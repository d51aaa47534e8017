"""Deterministic label and value similarity helpers."""

from __future__ import annotations

import re
from difflib import SequenceMatcher


_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")
_MULTISPACE_RE = re.compile(r"\s+")

COOPERATIVE_TYPES = frozenset({"ally", "family", "mentor", "associated"})
ADVERSARIAL_TYPES = frozenset({"enemy", "rival"})
_AFFINITY_GROUPS = (COOPERATIVE_TYPES, ADVERSARIAL_TYPES)


def normalize_label(value: str) -> str:
    """Normalize names, attribute values and type labels for matching."""

    collapsed = _MULTISPACE_RE.sub(" ", value.strip().lower().replace("_", " "))
    cleaned = _NON_ALNUM_RE.sub("", collapsed)
    return _MULTISPACE_RE.sub(" ", cleaned).strip()


def normalize_value(value: object) -> str:
    """Normalize an attribute value so equal-looking values compare equal."""

    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        number = float(value)
        return str(int(number)) if number.is_integer() else repr(number)
    if isinstance(value, (list, tuple, set)):
        return ",".join(sorted(normalize_value(item) for item in value))
    return normalize_label(str(value))


def token_set_similarity(left: str, right: str) -> float:
    """Return token overlap similarity in [0, 1]."""

    left_tokens = set(normalize_label(left).split())
    right_tokens = set(normalize_label(right).split())
    if not left_tokens or not right_tokens:
        return 0.0
    intersection = len(left_tokens & right_tokens)
    union = len(left_tokens | right_tokens)
    return intersection / union if union else 0.0


def string_similarity(left: str, right: str) -> float:
    """Composite deterministic similarity score."""

    norm_left = normalize_label(left)
    norm_right = normalize_label(right)
    if not norm_left or not norm_right:
        return 0.0
    if norm_left == norm_right:
        return 1.0
    sequence = SequenceMatcher(a=norm_left, b=norm_right).ratio()
    token = token_set_similarity(norm_left, norm_right)
    return max(sequence, token)


def type_match_similarity(suggested_type: str, corrected_type: str | None) -> float:
    """Score how close a human-corrected relationship type is to the suggested one."""

    if not corrected_type:
        return 1.0
    left = normalize_label(suggested_type)
    right = normalize_label(corrected_type)
    if left == right:
        return 1.0
    for group in _AFFINITY_GROUPS:
        if left in group and right in group:
            return 0.5
    return string_similarity(left, right)
