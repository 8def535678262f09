"""
Quality Review Adapter

Asks the generator for an independent verdict on one candidate and validates
the answer. Parsing returns a ``Result`` so that malformed output is a value,
not an exception: ``review_candidate`` converts any failure into a fail-closed
NO_GO verdict and always leaves the raw response on disk.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any, List, Optional

import structlog
from pydantic import ValidationError

from guardian.core.ai.generator import GeneratorClient, call_generator
from guardian.core.ai.json_utils import extract_json_object
from guardian.core.artifacts import ArtifactStore
from guardian.core.config import Settings, get_settings
from guardian.core.errors import (
    ErrorKind,
    GenerationError,
    GuardianError,
    Result,
    SchemaViolationError,
)

from .prompts import build_review_prompt
from .types import (
    Analysis,
    QualityVerdict,
    QualityVerdictPayload,
    RiskLevel,
    Strategy,
    Verdict,
)

logger = structlog.get_logger(__name__)


def _check_slop_score(value: Any) -> Optional[SchemaViolationError]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return SchemaViolationError(f"Schema violation: slop_score must be a number (got {value!r})")
    if math.isnan(value) or not 0.0 <= value <= 1.0:
        return SchemaViolationError(f"slop_score out of range ({value})")
    return None


def _format_validation_error(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        field = ".".join(str(loc) for loc in err.get("loc", ())) or "payload"
        parts.append(f"{field}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


def parse_quality_verdict(raw: str) -> Result[QualityVerdict]:
    """
    Parse one review response.

    Fails with ``GenerationError`` ("Parse error: ...") when no JSON object can
    be read, and with ``SchemaViolationError`` when ``slop_score`` is outside
    [0, 1] or ``verdict``/``risk_level`` are not from their enumerations.
    """
    try:
        data = json.loads(extract_json_object(raw))
    except GenerationError as e:
        return Result.fail(e)
    except json.JSONDecodeError as e:
        return Result.fail(GenerationError(f"Parse error: {e.msg} at position {e.pos}"))

    if not isinstance(data, dict):
        return Result.fail(SchemaViolationError("Schema violation: review is not a JSON object"))

    if "slop_score" in data:
        slop_error = _check_slop_score(data["slop_score"])
        if slop_error is not None:
            return Result.fail(slop_error)
        data["slop_score"] = float(data["slop_score"])

    try:
        payload = QualityVerdictPayload.model_validate(data)
    except ValidationError as e:
        return Result.fail(SchemaViolationError(f"Schema violation: {_format_validation_error(e)}"))

    return Result.ok(
        QualityVerdict(
            verdict=Verdict(payload.verdict),
            slop_score=min(1.0, max(0.0, payload.slop_score)),
            risk_level=RiskLevel(payload.risk_level),
            reasons=list(payload.reasons),
            suggested_adjustments=list(payload.suggested_adjustments),
        )
    )


def salvage_reasons(raw: str) -> List[str]:
    """Reasons from a review that parsed but broke its schema, if any."""
    try:
        data = json.loads(extract_json_object(raw))
    except (GenerationError, json.JSONDecodeError):
        return []
    if not isinstance(data, dict) or not isinstance(data.get("reasons"), list):
        return []
    return [str(reason) for reason in data["reasons"]]


@dataclass(frozen=True)
class ReviewOutcome:
    """Validated verdict for one candidate plus how it was obtained."""

    verdict: QualityVerdict
    error_kind: Optional[ErrorKind] = None
    raw_response_path: Optional[str] = None


async def review_candidate(
    client: GeneratorClient,
    strategy: Strategy,
    analysis: Analysis,
    *,
    store: ArtifactStore,
    candidate: str,
    settings: Optional[Settings] = None,
) -> ReviewOutcome:
    """
    Request and validate a quality verdict for a single candidate.

    Never raises for generator or payload problems: those become a NO_GO
    verdict with ``slop_score`` 1, ``risk_level`` high and a diagnostic reason.
    The raw response is written unmodified (empty when nothing came back).
    """
    cfg = settings or get_settings()
    prompt = build_review_prompt(strategy, analysis)

    raw = ""
    error: Optional[GuardianError] = None
    try:
        raw = await call_generator(client, prompt, settings=cfg, label=f"quality:{strategy.id}")
    except GenerationError as e:
        error = e

    raw_path = store.write_text(ArtifactStore.raw_review_name(candidate), raw)

    verdict: Optional[QualityVerdict] = None
    if error is None:
        parsed = parse_quality_verdict(raw)
        if parsed.is_ok:
            verdict = parsed.unwrap()
        else:
            error = parsed.error

    if error is not None:
        reasons = salvage_reasons(raw) if error.kind is ErrorKind.SCHEMA_VIOLATION else []
        reasons.append(error.message)
        verdict = QualityVerdict.fail_closed(reasons)
        logger.warning(
            "quality_review_failed_closed",
            strategy=strategy.id,
            error_kind=error.kind.value,
            error=error.message,
        )
    else:
        logger.info(
            "quality_review_completed",
            strategy=strategy.id,
            verdict=verdict.verdict.value,
            slop_score=verdict.slop_score,
        )

    return ReviewOutcome(
        verdict=verdict,
        error_kind=error.kind if error is not None else None,
        raw_response_path=str(raw_path) if raw_path else None,
    )
