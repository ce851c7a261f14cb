from __future__ import annotations

from dataclasses import dataclass, field
import importlib.resources
from pathlib import Path
from typing import Any, Mapping

import yaml


@dataclass(frozen=True)
class NarrativeConfig:
    model: str = "gemini-2.0-flash"
    placeholder: str = "AI analysis is currently unavailable."


@dataclass(frozen=True)
class TrackerConfig:
    leaderboard_limit: int = 5
    pid_prefix: str = "P"
    import_header_rows: int = 1
    narrative: NarrativeConfig = field(default_factory=NarrativeConfig)

    @staticmethod
    def from_mapping(raw: Mapping[str, Any]) -> "TrackerConfig":
        narrative_raw: Mapping[str, Any] = raw.get("narrative", {}) or {}
        defaults = NarrativeConfig()
        narrative = NarrativeConfig(
            model=str(narrative_raw.get("model", defaults.model)),
            placeholder=str(narrative_raw.get("placeholder", defaults.placeholder)),
        )
        limit = int(raw.get("leaderboard_limit", 5))
        if limit < 1:
            raise ValueError(f"leaderboard_limit must be >= 1, got {limit}")
        return TrackerConfig(
            leaderboard_limit=limit,
            pid_prefix=str(raw.get("pid_prefix", "P")),
            import_header_rows=int(raw.get("import_header_rows", 1)),
            narrative=narrative,
        )

    @staticmethod
    def from_yaml(path: str | Path) -> "TrackerConfig":
        path = Path(path)
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        return TrackerConfig.from_mapping(raw)


def default_config() -> TrackerConfig:
    text = importlib.resources.files("salestracker.resources").joinpath("default_config.yaml").read_text(encoding="utf-8")
    return TrackerConfig.from_mapping(yaml.safe_load(text))
