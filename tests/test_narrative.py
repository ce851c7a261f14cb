from __future__ import annotations

import sys
import types

import pytest

from salestracker import narrative_ai
from salestracker.aggregation import compute_dashboard_stats
from salestracker.config import NarrativeConfig
from salestracker.narrative_ai import analyze_income, build_prompt, generate_ai_narrative
from salestracker.types import TargetRecord


@pytest.fixture()
def stats():
    records = [
        {"nett_gp": 1_000_000, "quarter": "Q1", "category": "Implementation", "pic": "Andi", "product": "NetApp"},
        {"nett_gp": 500_000, "quarter": "Q2", "category": "LSC", "pic": "Budi", "product": ""},
    ]
    return compute_dashboard_stats(records, TargetRecord(year=2025, yearly_target=3_000_000, q1_target=750_000))


def _fake_genai(monkeypatch, generate):
    module = types.ModuleType("google.generativeai")
    module.configure = lambda api_key: None

    class GenerativeModel:
        def __init__(self, name, system_instruction=None):
            self.name = name

        def generate_content(self, prompt):
            return generate(prompt)

    module.GenerativeModel = GenerativeModel
    google = types.ModuleType("google")
    google.generativeai = module
    monkeypatch.setitem(sys.modules, "google", google)
    monkeypatch.setitem(sys.modules, "google.generativeai", module)


def test_prompt_contains_figures(stats) -> None:
    prompt = build_prompt(stats, 2025)
    assert "year 2025" in prompt
    assert "Total Income (YTD): Rp 1.500.000" in prompt
    assert "Achievement: 50.0%" in prompt
    assert "Q1: Income Rp 1.000.000 vs Target Rp 750.000 (133.3% achieved)" in prompt
    assert "LSC: Rp 500.000" in prompt


def test_no_api_key_returns_placeholder(monkeypatch, stats) -> None:
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    assert generate_ai_narrative(stats, 2025) is None

    result = analyze_income(stats, 2025, NarrativeConfig(placeholder="unavailable"))
    assert result.text == "unavailable"
    assert not result.ai_generated


def test_service_failure_leaves_stats_untouched(monkeypatch, stats) -> None:
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")

    def quota_exceeded(prompt):
        raise RuntimeError("429 Resource has been exhausted")

    _fake_genai(monkeypatch, quota_exceeded)
    before = (stats.total_income, stats.gap, list(stats.category_breakdown))

    result = analyze_income(stats, 2025)
    assert not result.ai_generated
    assert result.text == NarrativeConfig().placeholder
    assert (stats.total_income, stats.gap, list(stats.category_breakdown)) == before


def test_generated_text_is_returned(monkeypatch, stats) -> None:
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    seen = {}

    def respond(prompt):
        seen["prompt"] = prompt
        return types.SimpleNamespace(text="  ## Key Trends\n- Q1 ahead of target  ")

    _fake_genai(monkeypatch, respond)
    result = analyze_income(stats, 2025)

    assert result.ai_generated
    assert result.text == "## Key Trends\n- Q1 ahead of target"
    assert "QUARTERLY BREAKDOWN" in seen["prompt"]


def test_empty_response_falls_back(monkeypatch, stats) -> None:
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    _fake_genai(monkeypatch, lambda prompt: types.SimpleNamespace(text=""))
    assert narrative_ai.generate_ai_narrative(stats, 2025) is None
