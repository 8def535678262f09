"""Shared fixtures for guardian tests

Provides:
- guardian_settings: Settings with zero cooldowns and a per-test output dir
- fake_client_factory: scripted generator that routes prompts by marker
- make_analysis: builds an Analysis with a given allow-list
"""

import json
import re
from typing import Any, Dict, List, Optional

import pytest

from guardian.agent.self_healing.prompts import ANALYSIS_MARKER
from guardian.agent.self_healing.types import Analysis
from guardian.core.config import Settings

STRATEGY_ID = re.compile(r'"strategy"\s*:\s*"([^"]+)"')

MODEL_GO: Dict[str, Any] = {
    "verdict": "GO",
    "slop_score": 0.08,
    "risk_level": "low",
    "reasons": ["Model judged patch as acceptable"],
    "suggested_adjustments": [],
}


class FakeGeneratorClient:
    """
    Generator double.

    Generation prompts get ``{"strategies": [...]}`` (or ``generation_response``
    verbatim). Review prompts get MODEL_GO merged with the per-strategy
    override; a string override is returned as-is, an exception is raised.
    """

    def __init__(
        self,
        strategies: Optional[List[Dict[str, Any]]] = None,
        reviews: Optional[Dict[str, Any]] = None,
        generation_response: Any = None,
    ):
        self.strategies = strategies or []
        self.reviews = reviews or {}
        self.generation_response = generation_response
        self.prompts: List[str] = []
        self.generation_calls = 0
        self.review_calls: List[str] = []
        self.closed = False

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if ANALYSIS_MARKER in prompt:
            self.generation_calls += 1
            if isinstance(self.generation_response, BaseException):
                raise self.generation_response
            if self.generation_response is not None:
                return self.generation_response
            return json.dumps({"strategies": self.strategies})

        match = STRATEGY_ID.search(prompt)
        strategy_id = match.group(1) if match else ""
        self.review_calls.append(strategy_id)
        override = self.reviews.get(strategy_id)
        if isinstance(override, BaseException):
            raise override
        if isinstance(override, str):
            return override
        return json.dumps({**MODEL_GO, **(override or {})})

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def guardian_settings(tmp_path) -> Settings:
    return Settings(
        output_dir=str(tmp_path / "out"),
        generator_timeout_seconds=2.0,
        rate_limit_cooldown_seconds=0.0,
        timeout_cooldown_seconds=0.0,
        guard_rules_path=None,
        weak_signal_abstain_count=None,
    )


@pytest.fixture
def out_dir(guardian_settings):
    return guardian_settings.output_dir


@pytest.fixture
def fake_client_factory():
    return FakeGeneratorClient


@pytest.fixture
def make_analysis():
    def _make(allowed_files=None, hypotheses=None, selected="H1") -> Analysis:
        return Analysis.from_dict(
            {
                "diagnosis": {
                    "hypotheses": hypotheses
                    if hypotheses is not None
                    else [{"id": "H1", "title": "CI failure", "category": "source_code", "confidence": 0.91}],
                    "selected_hypothesis_id": selected,
                    "root_cause": "Regression detected in CI",
                },
                "patch_plan": {
                    "intent": "Fix CI failure with minimal, real code changes. No bypasses. No suppressions.",
                    "allowed_files": allowed_files
                    if allowed_files is not None
                    else ["src/**/*.ts", "tests/**/*.ts", "package.json"],
                    "strategy": ["Fix root cause"],
                },
            }
        )

    return _make
