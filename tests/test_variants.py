"""
Unit tests for deterministic A/B prompt selection.
"""

import pytest

from ai_resilience.core.templates import PromptTemplate
from ai_resilience.core.variants import INT32_MAX, bucket_for, select_prompt_variant

PROMPT_A = PromptTemplate(name="p", version="v1.0.0", template="A")
PROMPT_B = PromptTemplate(name="p", version="v1.1.0", template="B")


class TestBucketing:
    def test_bucket_is_deterministic(self):
        assert bucket_for("user-42") == bucket_for("user-42")

    def test_bucket_of_empty_key(self):
        assert bucket_for("") == 0.0

    def test_known_bucket_value(self):
        # "ab" hashes to 97 * 31 + 98
        assert bucket_for("ab") == pytest.approx(3105 / INT32_MAX)

    def test_bucket_range_with_overflow(self):
        bucket = bucket_for("a-very-long-user-identifier-that-overflows-32-bits")

        assert 0.0 <= bucket <= 1.0 + 1e-9


class TestSelectPromptVariant:
    def test_single_prompt_returned(self):
        assert select_prompt_variant([PROMPT_A], "anyone") is PROMPT_A

    def test_ratio_one_always_picks_second_version(self):
        assert select_prompt_variant([PROMPT_B, PROMPT_A], "user-1", test_ratio=1.0) is PROMPT_B

    def test_ratio_zero_always_picks_first_version(self):
        assert select_prompt_variant([PROMPT_B, PROMPT_A], "user-1", test_ratio=0.0) is PROMPT_A

    def test_same_key_same_variant(self):
        picks = {select_prompt_variant([PROMPT_A, PROMPT_B], "user-7").version for _ in range(5)}

        assert len(picks) == 1

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            select_prompt_variant([], "user")
        with pytest.raises(ValueError):
            select_prompt_variant([PROMPT_A, PROMPT_B], "user", test_ratio=1.5)
