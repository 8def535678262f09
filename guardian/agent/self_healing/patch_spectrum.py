"""
Patch Spectrum Assembler

Flow per run:
1. One generation call returns up to ``max_strategies`` candidates.
2. Each candidate is evaluated independently and concurrently:
   scope check -> pattern guard -> (only if both pass) model quality review.
3. Per-candidate results are merged into one ``PatchIndexResult`` where
   NO_GO from any stage wins, then ranked, and the lowest-risk GO candidate
   becomes the recommendation.

Every per-candidate failure is contained: it ends that candidate as NO_GO
and never touches the others.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Set

import structlog
from pydantic import ValidationError

from guardian.core.ai.generator import GeneratorClient, call_generator
from guardian.core.ai.json_utils import extract_json_object
from guardian.core.artifacts import INDEX_FILE, RAW_STRATEGIES_FILE, ArtifactStore
from guardian.core.config import Settings, get_settings
from guardian.core.errors import (
    ErrorKind,
    GenerationError,
    GuardianError,
    Result,
    SchemaViolationError,
)
from guardian.policy.guard_rules import GuardRule, load_guard_rules, scan_diff
from guardian.policy.scope import check_scope

from .log_context import FailureContext
from .prompts import build_generation_prompt
from .quality_review import review_candidate
from .types import (
    Analysis,
    PatchIndexResult,
    PatchSpectrum,
    RiskLevel,
    StrategiesPayload,
    Strategy,
    StrategyPayload,
    Verdict,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class StrategyBatch:
    """Candidates accepted from one generation call."""

    strategies: List[Strategy] = field(default_factory=list)
    discarded: List[Dict[str, Any]] = field(default_factory=list)
    generation_error: Optional[str] = None


def parse_strategies(raw: str, max_strategies: int) -> Result[StrategyBatch]:
    """
    Parse a ``{"strategies": [...]}`` payload.

    Entries that break the strategy schema are dropped and recorded in
    ``discarded`` with their position; so are repeated ids (the first one
    wins) and entries beyond ``max_strategies``. The whole payload fails
    only when it is not JSON or has no ``strategies`` list.
    """
    try:
        data = json.loads(extract_json_object(raw))
    except GenerationError as e:
        return Result.fail(e)
    except json.JSONDecodeError as e:
        return Result.fail(GenerationError(f"Parse error: {e.msg} at position {e.pos}"))

    try:
        payload = StrategiesPayload.model_validate(data)
    except ValidationError:
        return Result.fail(SchemaViolationError("Schema violation: response has no strategies list"))

    strategies: List[Strategy] = []
    discarded: List[Dict[str, Any]] = []
    seen_ids: Set[str] = set()
    for position, entry in enumerate(payload.strategies):
        entry_id = entry.get("id") if isinstance(entry, dict) else None
        try:
            item = StrategyPayload.model_validate(entry)
        except ValidationError as e:
            discarded.append(
                {"position": position, "id": entry_id, "error": f"Schema violation: {e.error_count()} error(s)"}
            )
            continue
        if item.id in seen_ids:
            discarded.append({"position": position, "id": item.id, "error": f"Duplicate strategy id: {item.id}"})
            continue
        if len(strategies) >= max_strategies:
            discarded.append(
                {"position": position, "id": item.id, "error": f"Exceeds max_strategies ({max_strategies})"}
            )
            continue
        seen_ids.add(item.id)
        strategies.append(
            Strategy(
                id=item.id,
                label=item.label or item.id.upper(),
                risk_level=RiskLevel(item.risk_level),
                summary=item.summary,
                diff=item.diff,
                position=position,
            )
        )
    return Result.ok(StrategyBatch(strategies=strategies, discarded=discarded))


async def generate_strategies(
    client: GeneratorClient,
    analysis: Analysis,
    ctx: Optional[FailureContext],
    *,
    store: ArtifactStore,
    settings: Optional[Settings] = None,
) -> StrategyBatch:
    """Single generation pass. Failures yield an empty batch, not an exception."""
    cfg = settings or get_settings()
    prompt = build_generation_prompt(analysis, ctx, cfg.max_strategies)

    try:
        raw = await call_generator(client, prompt, settings=cfg, label="patch_options")
    except GenerationError as e:
        store.write_text(RAW_STRATEGIES_FILE, "")
        logger.error("strategy_generation_failed", error=e.message)
        return StrategyBatch(generation_error=e.message)

    store.write_text(RAW_STRATEGIES_FILE, raw)
    parsed = parse_strategies(raw, cfg.max_strategies)
    if not parsed.is_ok:
        logger.error("strategy_payload_rejected", error=parsed.error.message)
        return StrategyBatch(generation_error=parsed.error.message)

    batch = parsed.unwrap()
    if batch.discarded:
        logger.warning("strategies_discarded", count=len(batch.discarded))
    logger.info("strategies_generated", count=len(batch.strategies), ids=[s.id for s in batch.strategies])
    return batch


def _review_record(strategy: Strategy, candidate: str, result: PatchIndexResult, adjustments: List[str]) -> Dict[str, Any]:
    return {
        "strategy": strategy.id,
        "candidate": candidate,
        "verdict": result.verdict.value,
        "slop_score": result.slop_score,
        "risk_level": result.risk_level.value,
        "declared_risk_level": strategy.risk_level.value,
        "reasons": list(result.reasons),
        "suggested_adjustments": adjustments,
        "files": list(result.files),
        "review_skipped": result.review_skipped,
        "error_kind": result.error_kind,
    }


async def evaluate_candidate(
    strategy: Strategy,
    analysis: Analysis,
    *,
    candidate: str,
    client: GeneratorClient,
    store: ArtifactStore,
    rules: Sequence[GuardRule],
    semaphore: asyncio.Semaphore,
    settings: Settings,
) -> PatchIndexResult:
    """
    Run one candidate through scope, pattern guard and (if still clean) review.

    Scope and pattern checks both run so every firing reason is recorded; the
    model is consulted only when neither fired.
    """
    diff_path = store.write_text(ArtifactStore.diff_name(candidate), strategy.diff)

    scope = check_scope(strategy.diff, analysis.patch_plan.allowed_files)
    scan = scan_diff(strategy.diff, rules)

    reasons: List[str] = []
    violations: List[GuardianError] = []
    if not scope.allowed:
        reasons.extend(scope.reasons)
        violations.append(scope.to_error())
    if scan.fired:
        reasons.extend(scan.reasons)
        violations.append(scan.to_error())
    error_kind: Optional[ErrorKind] = violations[0].kind if violations else None

    adjustments: List[str] = []
    raw_path: Optional[str] = None
    if reasons:
        result_kwargs: Dict[str, Any] = dict(
            verdict=Verdict.NO_GO,
            risk_level=RiskLevel.HIGH,
            slop_score=1.0,
            review_skipped=True,
        )
        logger.info(
            "candidate_rejected_deterministically",
            strategy=strategy.id,
            kinds=[v.kind.value for v in violations],
            reasons=reasons,
        )
    else:
        async with semaphore:
            outcome = await review_candidate(
                client, strategy, analysis, store=store, candidate=candidate, settings=settings
            )
        review = outcome.verdict
        reasons.extend(review.reasons)
        adjustments = list(review.suggested_adjustments)
        raw_path = outcome.raw_response_path
        error_kind = outcome.error_kind
        result_kwargs = dict(
            verdict=review.verdict,
            risk_level=RiskLevel.highest(strategy.risk_level, review.risk_level),
            slop_score=review.slop_score,
            review_skipped=False,
        )

    result = PatchIndexResult(
        id=strategy.id,
        label=strategy.label,
        files=list(scope.touched_files),
        reasons=reasons,
        declared_risk_level=strategy.risk_level,
        summary=strategy.summary,
        position=strategy.position,
        error_kind=error_kind.value if error_kind else None,
        diff_path=str(diff_path) if diff_path else None,
        review_path=str(store.path(ArtifactStore.review_name(candidate))),
        raw_response_path=raw_path,
        **result_kwargs,
    )
    written = store.write_json(
        ArtifactStore.review_name(candidate), _review_record(strategy, candidate, result, adjustments)
    )
    if written is None:
        result = replace(result, review_path=None)
    return result


def _internal_failure(strategy: Strategy, error: Exception) -> PatchIndexResult:
    return PatchIndexResult(
        id=strategy.id,
        label=strategy.label,
        verdict=Verdict.NO_GO,
        risk_level=RiskLevel.HIGH,
        slop_score=1.0,
        files=[],
        reasons=[f"Internal evaluation error: {error}"],
        declared_risk_level=strategy.risk_level,
        summary=strategy.summary,
        position=strategy.position,
        error_kind=ErrorKind.INTERNAL.value,
    )


async def _evaluate_contained(strategy: Strategy, analysis: Analysis, **kwargs: Any) -> PatchIndexResult:
    try:
        return await evaluate_candidate(strategy, analysis, **kwargs)
    except Exception as e:
        logger.exception("candidate_evaluation_crashed", strategy=strategy.id)
        return _internal_failure(strategy, e)


def rank_results(results: Sequence[PatchIndexResult]) -> List[PatchIndexResult]:
    """GO first by risk tier then generation order; NO_GO after in generation order."""
    go = sorted((r for r in results if r.is_go), key=lambda r: (r.risk_level.rank, r.position))
    no_go = sorted((r for r in results if not r.is_go), key=lambda r: r.position)
    return go + no_go


def select_recommendation(results: Sequence[PatchIndexResult]) -> Optional[PatchIndexResult]:
    ranked = rank_results(results)
    if ranked and ranked[0].is_go:
        return ranked[0]
    return None


async def assemble_spectrum(
    strategies: Sequence[Strategy],
    analysis: Analysis,
    *,
    client: GeneratorClient,
    store: ArtifactStore,
    settings: Optional[Settings] = None,
    rules: Optional[Sequence[GuardRule]] = None,
    discarded: Optional[List[Dict[str, Any]]] = None,
    generation_error: Optional[str] = None,
) -> PatchSpectrum:
    """Evaluate every candidate concurrently and persist the index."""
    cfg = settings or get_settings()
    rule_table = list(rules) if rules is not None else load_guard_rules(cfg.guard_rules_path)
    semaphore = asyncio.Semaphore(cfg.max_concurrent_reviews)

    # Names are claimed up front so duplicates resolve in generation order
    candidates = [store.claim_candidate_name(s.id) for s in strategies]
    results = await asyncio.gather(
        *(
            _evaluate_contained(
                strategy,
                analysis,
                candidate=candidate,
                client=client,
                store=store,
                rules=rule_table,
                semaphore=semaphore,
                settings=cfg,
            )
            for strategy, candidate in zip(strategies, candidates)
        )
    )

    ordered = sorted(results, key=lambda r: r.position)
    recommended = select_recommendation(ordered)
    spectrum = PatchSpectrum(
        results=ordered,
        ranking=[r.id for r in rank_results(ordered)],
        recommended_id=recommended.id if recommended else None,
        discarded_strategies=list(discarded or []),
        generation_error=generation_error,
    )
    store.write_json(INDEX_FILE, spectrum.to_dict())

    if recommended:
        logger.info(
            "patch_spectrum_assembled",
            candidates=len(ordered),
            go=sum(1 for r in ordered if r.is_go),
            recommended=recommended.id,
        )
    else:
        logger.warning("no_safe_patch_available", candidates=len(ordered))
    return spectrum


async def generate_patch_options(
    analysis: Analysis,
    ctx: Optional[FailureContext],
    *,
    client: GeneratorClient,
    store: Optional[ArtifactStore] = None,
    out_dir: Optional[str | Path] = None,
    settings: Optional[Settings] = None,
    rules: Optional[Sequence[GuardRule]] = None,
) -> PatchSpectrum:
    """
    Generate candidates for an analysed failure and certify or reject each.

    The client is borrowed: it is neither created nor closed here.
    """
    cfg = settings or get_settings()
    store = store or ArtifactStore(out_dir or cfg.output_dir)

    batch = await generate_strategies(client, analysis, ctx, store=store, settings=cfg)
    return await assemble_spectrum(
        batch.strategies,
        analysis,
        client=client,
        store=store,
        settings=cfg,
        rules=rules,
        discarded=batch.discarded,
        generation_error=batch.generation_error,
    )
