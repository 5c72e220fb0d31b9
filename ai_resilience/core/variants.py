"""
Deterministic A/B selection between active prompt versions.

The same key always lands in the same bucket, so a user keeps seeing the
same prompt version for as long as the set of active versions is unchanged.
"""

from typing import Optional, Sequence

from .templates import PromptTemplate

INT32_MAX = 2147483647


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value > INT32_MAX else value


def bucket_for(key: str) -> float:
    """Map ``key`` to a number in [0, 1] with a 31-multiplier string hash."""
    h = 0
    for char in key:
        h = _to_int32((h << 5) - h + ord(char))
    return abs(h) / INT32_MAX


def select_prompt_variant(
    prompts: Sequence[PromptTemplate],
    key: Optional[str],
    test_ratio: float = 0.5
) -> PromptTemplate:
    """Pick version A or B of a prompt for ``key``.

    Versions are ordered by version string; keys whose bucket falls below
    ``test_ratio`` get the second version, everyone else the first.

    Raises:
        ValueError: If ``prompts`` is empty or the ratio is outside [0, 1]
    """
    if not prompts:
        raise ValueError("at least one prompt version is required")
    if not 0.0 <= test_ratio <= 1.0:
        raise ValueError("test_ratio must be between 0 and 1")
    if len(prompts) == 1:
        return prompts[0]

    ordered = sorted(prompts, key=lambda p: p.version)
    if bucket_for(key or "anonymous") < test_ratio:
        return ordered[1]
    return ordered[0]
