"""
Unit tests for the token budget model
"""

import pytest

from rotor.config import TokenBudgetConfig
from rotor.token_budget import (
    Thresholds,
    TokenBudget,
    describe_table,
    estimate_tokens,
    health_indicator,
    thresholds,
    thresholds_from_config,
    token_status_line,
    usage_percent,
)


class TestThresholdLookup:
    """Model id → (warn, rotate) resolution"""

    @pytest.mark.parametrize("model,expected", [
        ("sonnet-4.5-thinking", (700000, 800000)),
        ("gemini-3-pro", (700000, 800000)),
        ("gpt-5.2-high", (190000, 217600)),
        ("opus-4.5-thinking", (140000, 160000)),
        ("composer-1", (140000, 160000)),
        ("claude-sonnet-4", (140000, 160000)),
        ("claude-opus", (140000, 160000)),
    ])
    def test_known_model_families(self, model, expected):
        """Each family resolves to its explicit table entry"""
        limits = thresholds(model)
        assert (limits.warn, limits.rotate) == expected

    def test_lookup_is_case_insensitive(self):
        assert thresholds("GPT-5.2-HIGH").rotate == 217600

    def test_first_matching_entry_wins(self):
        """sonnet-4.5-thinking also matches *sonnet*4* but the earlier tier applies"""
        assert thresholds("sonnet-4.5-thinking").rotate == 800000

    @pytest.mark.parametrize("model", ["", None, "mystery-model", "llama-3"])
    def test_unknown_model_uses_conservative_default(self, model):
        """Unrecognized ids never fail"""
        limits = thresholds(model)
        assert (limits.warn, limits.rotate) == (70000, 80000)
        assert limits.tier == "default"

    def test_custom_table_and_default(self):
        table = [{"patterns": ["tiny-*"], "warn": 10, "rotate": 20}]
        default = Thresholds(1, 2)
        assert thresholds("tiny-model", table, default).rotate == 20
        assert thresholds("other", table, default) == default

    def test_from_config(self):
        config = TokenBudgetConfig(default_warn=100, default_rotate=200, model_thresholds=[])
        limits = thresholds_from_config("opus-4.5", config)
        assert (limits.warn, limits.rotate) == (100, 200)

    def test_warn_must_be_below_rotate(self):
        with pytest.raises(ValueError):
            Thresholds(200, 200)


class TestTokenEstimate:
    """Byte counters and the crude bytes/4 estimate"""

    def test_fresh_budget_counts_only_prompt(self):
        budget = TokenBudget()
        assert budget.total_bytes == 3000
        assert estimate_tokens(budget) == 750

    def test_all_counters_contribute(self):
        budget = TokenBudget(prompt_bytes=0)
        budget.add_read(400)
        budget.add_write(400)
        budget.add_shell(400)
        budget.add_assistant(400)
        assert estimate_tokens(budget) == 400

    def test_estimate_is_monotonic(self):
        """Adding bytes never lowers the estimate, negative sizes are ignored"""
        budget = TokenBudget()
        previous = estimate_tokens(budget)
        for amount in [10, 0, -50, 4000, 3]:
            budget.add_read(amount)
            budget.add_shell(amount)
            current = estimate_tokens(budget)
            assert current >= previous
            previous = current

    def test_configurable_ratio(self):
        budget = TokenBudget(prompt_bytes=0, bytes_per_token=2)
        budget.add_assistant(10)
        assert estimate_tokens(budget) == 5

    def test_breakdown_in_kb(self):
        budget = TokenBudget()
        budget.add_read(2048)
        assert budget.breakdown() == "[read:2.0KB write:0.0KB assist:0.0KB shell:0.0KB]"


class TestHealthAndStatus:
    """Cosmetic health markers and TOKENS status lines"""

    limits = Thresholds(70, 100)

    @pytest.mark.parametrize("tokens,marker", [
        (0, "🟢"), (59, "🟢"), (60, "🟡"), (79, "🟡"), (80, "🔴"), (150, "🔴"),
    ])
    def test_health_buckets(self, tokens, marker):
        assert health_indicator(tokens, self.limits) == marker

    def test_usage_percent(self):
        assert usage_percent(72, self.limits) == 72

    def test_status_line_plain(self):
        budget = TokenBudget(prompt_bytes=200)  # 50 tokens
        line = token_status_line(budget, self.limits)
        assert line.startswith("TOKENS: 50 / 100 (50%) [read:")
        assert "approaching" not in line

    def test_status_line_approaching(self):
        budget = TokenBudget(prompt_bytes=300)  # 75 tokens
        assert "(75%) - approaching limit" in token_status_line(budget, self.limits)

    def test_status_line_imminent(self):
        budget = TokenBudget(prompt_bytes=368)  # 92 tokens
        assert "(92%) - rotation imminent" in token_status_line(budget, self.limits)

    def test_describe_table(self):
        rows = describe_table([{"patterns": ["a*", "b*"], "warn": 1, "rotate": 2}])
        assert rows == ["a*, b*: warn=1 rotate=2"]
