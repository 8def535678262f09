"""Prompt templates for strategy generation and quality review."""

import json
from typing import Any, Dict, Optional

from .log_context import FailureContext
from .types import Analysis, Strategy

ANALYSIS_MARKER = "ANALYSIS_JSON:"
REVIEW_MARKER = "QUALITY_REVIEW_INPUT:"

STRATEGY_LADDER = [
    ("conservative", "CONSERVATIVE", "low", "smallest change that fixes the root cause"),
    ("balanced", "BALANCED", "medium", "fix the root cause and directly related code"),
    ("aggressive", "AGGRESSIVE", "high", "broader refactor around the failure"),
]

GENERATION_TEMPLATE = """Propose up to {max_strategies} candidate patches for the CI failure below.

Return JSON only, in this shape:
{{
  "strategies": [
    {{"id": "...", "label": "...", "risk_level": "low|medium|high", "summary": "...", "diff": "<unified diff>"}}
  ]
}}

Strategy tiers, in order:
{ladder}

Rules:
- Only touch files matching the allowed_files globs of the patch plan.
- Every diff must be a unified diff with ---/+++ headers.
- Fix the cause. Do not skip, delete or weaken tests.
- No suppression comments, no TODO/FIXME/HACK placeholders.
- Never make a failing command succeed unconditionally or mark a step as allowed to fail.
- Never disable TLS/SSL verification or switch to insecure transports.

FAILURE_CONTEXT:
{context}

{marker}
{analysis}
"""

REVIEW_TEMPLATE = """Review one candidate CI patch. Judge whether it fixes the diagnosed root cause
with a real change, or only hides the failure.

Return JSON only, in this shape:
{{
  "verdict": "GO" | "NO_GO",
  "slop_score": <number between 0 and 1, higher means more filler and less real fix>,
  "risk_level": "low" | "medium" | "high",
  "reasons": ["..."],
  "suggested_adjustments": ["..."]
}}

{marker}
{payload}
"""


def _context_payload(ctx: Optional[FailureContext]) -> Dict[str, Any]:
    if ctx is None:
        return {}
    return {
        "workflow_path": ctx.workflow_path,
        "job": ctx.job,
        "step": ctx.step,
        "exit_code": ctx.exit_code,
        "failed_test_files": ctx.failed_test_files,
        "assertion_signals": ctx.assertion_signals,
        "log_summary": ctx.log_summary,
    }


def build_generation_prompt(
    analysis: Analysis, ctx: Optional[FailureContext], max_strategies: int
) -> str:
    ladder = "\n".join(
        f"- {sid} ({label}, {risk} risk): {intent}"
        for sid, label, risk, intent in STRATEGY_LADDER[:max_strategies]
    )
    return GENERATION_TEMPLATE.format(
        max_strategies=max_strategies,
        ladder=ladder,
        context=json.dumps(_context_payload(ctx), indent=2),
        marker=ANALYSIS_MARKER,
        analysis=json.dumps(analysis.to_dict(), indent=2),
    )


def build_review_prompt(strategy: Strategy, analysis: Analysis) -> str:
    """One prompt per candidate; no other candidate's content is included."""
    diagnosis = analysis.diagnosis
    payload = {
        "strategy": strategy.id,
        "label": strategy.label,
        "declared_risk_level": strategy.risk_level.value,
        "summary": strategy.summary,
        "root_cause": diagnosis.root_cause,
        "selected_hypothesis_id": diagnosis.selected_hypothesis_id,
        "patch_intent": analysis.patch_plan.intent,
        "allowed_files": analysis.patch_plan.allowed_files,
        "diff": strategy.diff,
    }
    return REVIEW_TEMPLATE.format(marker=REVIEW_MARKER, payload=json.dumps(payload, indent=2))
