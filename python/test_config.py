"""
Tests for Settings and the result models.
"""

import pytest
from pydantic import ValidationError

from bidfill.config import Settings
from bidfill.models import CompanyProfile, ReplacementOutcome, ReplacementRequest, Strategy, TenderData


def test_defaults():
    s = Settings(_env_file=None)
    assert s.fuzzy_token_threshold == 0.8
    assert s.second_pass_threshold == 2
    assert (s.review_highlight, s.manual_highlight) == ("yellow", "red")
    assert s.consolidate_runs


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("BIDFILL_FUZZY_TOKEN_THRESHOLD", "0.9")
    monkeypatch.setenv("BIDFILL_LOG_LEVEL", "debug")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
    s = Settings(_env_file=None)
    assert s.fuzzy_token_threshold == 0.9
    assert s.log_level == "DEBUG"
    assert s.anthropic_api_key == "sk-test"


def test_invalid_threshold(monkeypatch):
    monkeypatch.setenv("BIDFILL_FUZZY_TOKEN_THRESHOLD", "1.5")
    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_configure_logging_json():
    Settings(_env_file=None).configure_logging(json_output=True)


def test_profile_fields_drop_empty_values():
    profile = CompanyProfile(nazev="Alfa s.r.o.", ico="07023987", bankovni_pobocka="Brno")
    assert profile.as_fields() == {"nazev": "Alfa s.r.o.", "ico": "07023987", "bankovni_pobocka": "Brno"}
    assert TenderData().as_fields() == {"dph_sazba": "21"}


def test_outcome_applied_flag():
    request = ReplacementRequest(original="a", replacement="b")
    assert ReplacementOutcome(request=request, strategy_used=Strategy.LABEL).applied
    assert not ReplacementOutcome(request=request, strategy_used=Strategy.NOT_FOUND).applied
