"""Gemini-powered commentary on dashboard statistics.

Generates analyst-style commentary for a year's income figures using Google
Gemini. The service is best effort: when GEMINI_API_KEY is not set or the call
fails (quota, rate limit, network) a placeholder message is returned and the
statistics passed in are left untouched.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from .aggregation import achievement_of
from .config import NarrativeConfig
from .reporting import format_idr
from .types import DashboardStats

logger = logging.getLogger("salestracker.narrative")

SYSTEM_INSTRUCTION = (
    "You are a business analytics expert specializing in income analysis and strategic "
    "recommendations. Provide clear, actionable insights based on data."
)


@dataclass(frozen=True)
class NarrativeResult:
    text: str
    ai_generated: bool


def build_prompt(stats: DashboardStats, year: int | str) -> str:
    """Build a structured prompt with the year's income figures."""
    quarterly = "\n".join(
        f"{q.quarter}: Income {format_idr(q.income)} vs Target {format_idr(q.target)} "
        f"({achievement_of(q.income, q.target):.1f}% achieved)"
        for q in stats.quarterly_breakdown
    )
    categories = "\n".join(f"{c.name}: {format_idr(c.value)}" for c in stats.category_breakdown) or "No projects recorded"

    return f"""Analyze this business income data for year {year} and provide actionable insights:

OVERALL PERFORMANCE:
- Total Income (YTD): {format_idr(stats.total_income)}
- Yearly Target: {format_idr(stats.target)}
- Achievement: {stats.achievement_percent:.1f}%
- GAP to Target: {format_idr(stats.gap)}

QUARTERLY BREAKDOWN:
{quarterly}

INCOME BY CATEGORY:
{categories}

Provide a concise analysis with:
1. **Key Trends**: Identify 2-3 significant patterns in the data
2. **Strengths**: What's working well?
3. **Concerns**: What needs attention?
4. **Recommendations**: 3-4 specific, actionable strategies to boost income or improve margins

Keep the response professional, data-driven, and focused on actionable insights. Format it clearly with markdown headers and bullet points."""


def generate_ai_narrative(stats: DashboardStats, year: int | str, model_name: str = "gemini-2.0-flash") -> str | None:
    """Generate commentary using Gemini.

    Returns the narrative text, or None if Gemini is unavailable.
    """
    api_key = os.environ.get("GEMINI_API_KEY")
    if not api_key:
        return None

    try:
        import google.generativeai as genai

        genai.configure(api_key=api_key)
        model = genai.GenerativeModel(model_name, system_instruction=SYSTEM_INSTRUCTION)
        response = model.generate_content(build_prompt(stats, year))
        text = (response.text or "").strip()
    except Exception:
        logger.warning("Narrative generation failed for year %s", year, exc_info=True)
        return None

    if not text:
        logger.warning("Narrative generation returned no text for year %s", year)
        return None
    return text


def analyze_income(stats: DashboardStats, year: int | str, config: NarrativeConfig | None = None) -> NarrativeResult:
    config = config or NarrativeConfig()
    text = generate_ai_narrative(stats, year, model_name=config.model)
    if text:
        return NarrativeResult(text=text, ai_generated=True)
    return NarrativeResult(text=config.placeholder, ai_generated=False)
