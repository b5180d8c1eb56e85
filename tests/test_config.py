"""
Tests for configuration defaults and validation.
"""

from brokerage_graph.config import Config, config


class TestDefaults:
    """Default values when no BROKERAGE_* variables are set."""

    def test_singleton_is_config_instance(self):
        assert isinstance(config, Config)

    def test_match_threshold_default(self):
        assert Config.MATCH_THRESHOLD == 70

    def test_high_priority_score_default(self):
        assert Config.HIGH_PRIORITY_SCORE == 90

    def test_deal_defaults(self):
        assert Config.DEAL_NUMBER_PREFIX == 'DEAL'
        assert Config.EXPECTED_CLOSING_DAYS == 60
        assert Config.PRIMARY_COMMISSION_SHARE == 60


class TestValidate:
    """Config.validate() reports out-of-range values."""

    def test_defaults_are_valid(self):
        assert Config.validate() == []

    def test_threshold_out_of_range(self, monkeypatch):
        monkeypatch.setattr(Config, 'MATCH_THRESHOLD', 150)

        problems = Config.validate()

        assert problems == ['BROKERAGE_MATCH_THRESHOLD must be within 0-100']

    def test_multiple_problems(self, monkeypatch):
        monkeypatch.setattr(Config, 'EXPECTED_CLOSING_DAYS', -1)
        monkeypatch.setattr(Config, 'DEAL_NUMBER_PREFIX', '')

        problems = Config.validate()

        assert len(problems) == 2
