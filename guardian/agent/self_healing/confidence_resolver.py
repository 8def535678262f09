"""
Confidence-Gap Resolver

Responsibility:
- Re-rank diagnosis hypotheses by confidence, ignoring the generator's own pick
- Nudge hypotheses that line up with the failing step (deterministic, bounded)
- Flag low-confidence ambiguity when the top two hypotheses are too close

Pure: no I/O, no model calls. The diagnosis is updated in place once, before
any strategy generation.
"""

from __future__ import annotations

import re
from typing import List, Optional, Set, Tuple

import structlog

from guardian.core.config import Settings, get_settings

from .log_context import FailureContext
from .types import Diagnosis, Hypothesis, coerce_confidence

logger = structlog.get_logger(__name__)

GAP_PRECISION = 6
DEEP_TRACE_FLAG = "--show-reasoning"

# (step kind, step-name matcher, hypothesis categories that fit that kind)
STEP_KINDS: List[Tuple[str, re.Pattern[str], Set[str]]] = [
    ("test", re.compile(r"test|jest|spec", re.I), {"test", "source_code"}),
    (
        "typecheck",
        re.compile(r"type.?check|mypy|pyright|\btsc\b", re.I),
        {"type", "typecheck", "source_code"},
    ),
    (
        "lint",
        re.compile(r"lint|flake8|ruff|prettier|black|format", re.I),
        {"lint", "style", "source_code"},
    ),
    ("build", re.compile(r"build|compile|bundle", re.I), {"build", "source_code", "dependency"}),
    (
        "install",
        re.compile(r"install|setup|dependenc|restore|npm ci|pip", re.I),
        {"dependency", "environment"},
    ),
]


def classify_step(step: Optional[str]) -> Optional[str]:
    """Return the kind of CI step ("test", "lint", ...) or None."""
    if not step:
        return None
    for kind, matcher, _ in STEP_KINDS:
        if matcher.search(step):
            return kind
    return None


def _fitting_categories(kind: Optional[str]) -> Set[str]:
    for step_kind, _, categories in STEP_KINDS:
        if step_kind == kind:
            return categories
    return set()


def _context_references(ctx: FailureContext) -> List[str]:
    refs: List[str] = []
    if ctx.step:
        refs.append(ctx.step)
    if ctx.workflow_path:
        refs.append(ctx.workflow_path)
    for test_file in ctx.failed_test_files:
        refs.append(test_file)
        basename = test_file.rsplit("/", 1)[-1]
        if basename != test_file:
            refs.append(basename)
    return [ref.lower() for ref in refs if ref.strip()]


def step_alignment_bonus(hypothesis: Hypothesis, ctx: Optional[FailureContext], bonus: float) -> float:
    """
    Bonus for a hypothesis whose category fits the failing step AND whose
    evidence or next check cites the step, the workflow or a failing test file.
    """
    if ctx is None or bonus <= 0:
        return 0.0
    categories = _fitting_categories(classify_step(ctx.step))
    if hypothesis.category.lower() not in categories:
        return 0.0
    cited = " ".join(hypothesis.evidence + [hypothesis.next_check]).lower()
    if any(ref in cited for ref in _context_references(ctx)):
        return bonus
    return 0.0


def resolve_confidence_gap(
    diagnosis: Diagnosis,
    ctx: Optional[FailureContext] = None,
    settings: Optional[Settings] = None,
) -> Diagnosis:
    """
    Normalize the hypothesis ranking of ``diagnosis`` in place.

    After this call ``selected_hypothesis_id`` names the highest-confidence
    hypothesis, ``confidence_score`` is that confidence, ``confidence_gap`` is
    the distance to the runner-up (0 with fewer than two hypotheses), and
    ``low_confidence_ambiguity`` is set when the gap is under the configured
    threshold, in which case ``review_guidance`` explains what to do next.

    Returns:
        The same ``Diagnosis`` object, for chaining
    """
    cfg = settings or get_settings()
    threshold = cfg.confidence_gap_threshold

    for hypothesis in diagnosis.hypotheses:
        hypothesis.confidence = coerce_confidence(hypothesis.confidence)
        boost = step_alignment_bonus(hypothesis, ctx, cfg.step_alignment_bonus)
        if boost:
            hypothesis.confidence = min(1.0, hypothesis.confidence + boost)

    # Stable sort: ties keep the diagnosis engine's order
    diagnosis.hypotheses.sort(key=lambda h: h.confidence, reverse=True)

    if not diagnosis.hypotheses:
        diagnosis.confidence_gap = 0.0
        diagnosis.low_confidence_ambiguity = False
        diagnosis.review_guidance = None
        return diagnosis

    top = diagnosis.hypotheses[0]
    if diagnosis.selected_hypothesis_id and diagnosis.selected_hypothesis_id != top.id:
        logger.info(
            "selected_hypothesis_overridden",
            original=diagnosis.selected_hypothesis_id,
            selected=top.id,
        )
    diagnosis.selected_hypothesis_id = top.id
    diagnosis.category = top.category
    diagnosis.confidence_score = top.confidence

    if len(diagnosis.hypotheses) < 2:
        diagnosis.confidence_gap = 0.0
        diagnosis.low_confidence_ambiguity = False
        diagnosis.review_guidance = None
        return diagnosis

    runner_up = diagnosis.hypotheses[1]
    gap = round(top.confidence - runner_up.confidence, GAP_PRECISION)
    diagnosis.confidence_gap = gap
    diagnosis.low_confidence_ambiguity = gap < threshold

    if diagnosis.low_confidence_ambiguity:
        guidance = (
            f"Low-confidence ambiguity: {top.id} ({top.confidence:.2f}) and "
            f"{runner_up.id} ({runner_up.confidence:.2f}) differ by {gap:.2f}, "
            f"below the {threshold:.2f} threshold. Re-run with {DEEP_TRACE_FLAG} "
            f"for a deeper trace before trusting any patch."
        )
        if top.next_check:
            guidance += f" Next check: {top.next_check}"
        diagnosis.review_guidance = guidance
        logger.warning("low_confidence_ambiguity", top=top.id, runner_up=runner_up.id, gap=gap)
    else:
        diagnosis.review_guidance = None

    return diagnosis
