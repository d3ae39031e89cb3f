"""
Keyword, stop-word and path heuristics loaded as data.
"""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from ctxengine.app.config.runtime import get_runtime_config


DEFAULT_HEURISTICS_PATH = Path(__file__).resolve().parent / "heuristics.json"


class Heuristics(BaseModel):
    commit_stopwords: frozenset[str] = Field(default_factory=frozenset)
    cluster_roots: tuple[str, ...] = ("apps", "packages", "services", "libs")
    ignored_path_prefixes: tuple[str, ...] = ("node_modules/", ".git/", "dist/", "build/", ".next/")
    persona_signals: dict[str, tuple[str, ...]] = Field(default_factory=dict)
    persona_signal_weights: dict[str, float] = Field(default_factory=dict)

    @field_validator("commit_stopwords", mode="before")
    @classmethod
    def _lower_stopwords(cls, value):
        return frozenset(str(item).strip().lower() for item in (value or []) if str(item).strip())

    @field_validator("cluster_roots", "ignored_path_prefixes", mode="before")
    @classmethod
    def _lower_paths(cls, value):
        return tuple(str(item).strip().lower() for item in (value or []) if str(item).strip())


def load_heuristics(path: str | Path | None = None) -> Heuristics:
    configured = path or get_runtime_config().heuristics_path or DEFAULT_HEURISTICS_PATH
    with open(configured, "r", encoding="utf-8") as f:
        data = json.load(f)
    return Heuristics.model_validate(data)


_heuristics: Heuristics | None = None


def get_heuristics() -> Heuristics:
    global _heuristics
    if _heuristics is None:
        _heuristics = load_heuristics()
    return _heuristics
