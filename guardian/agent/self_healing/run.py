"""
Top-level guardian run.

Order is fixed: abstain check, confidence-gap resolution, then the patch
spectrum. The orchestrator owns the generator client when it creates one and
closes it when the run ends, whatever the outcome.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import structlog

from guardian.core.ai.generator import GeneratorClient, OpenAIGeneratorClient
from guardian.core.artifacts import ABSTAIN_REPORT_FILE, ANALYSIS_FILE, ArtifactStore, new_run_dir
from guardian.core.config import Settings, get_settings
from guardian.core.errors import AbstainClassification

from .abstain_classifier import ensure_patchable
from .confidence_resolver import resolve_confidence_gap
from .log_context import FailureContext
from .patch_spectrum import generate_patch_options
from .types import AbstainReport, Analysis, PatchSpectrum

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class GuardianRun:
    """Everything one run produced. Exactly one of abstain/spectrum is set."""

    out_dir: str
    analysis: Analysis
    abstain: Optional[AbstainReport] = None
    spectrum: Optional[PatchSpectrum] = None

    @property
    def outcome(self) -> str:
        if self.abstain is not None:
            return "abstained"
        return self.spectrum.outcome if self.spectrum else "no_safe_patch"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "out_dir": self.out_dir,
            "outcome": self.outcome,
            "analysis": self.analysis.to_dict(),
            "abstain": self.abstain.to_dict() if self.abstain else None,
            "patch_index": self.spectrum.to_dict() if self.spectrum else None,
        }


async def run_guardian(
    analysis: Analysis,
    ctx: FailureContext,
    *,
    client: Optional[GeneratorClient] = None,
    out_dir: Optional[str | Path] = None,
    settings: Optional[Settings] = None,
) -> GuardianRun:
    """
    Run the guard-and-spectrum engine for one failed CI run.

    Args:
        analysis: Diagnosis and patch plan from the diagnosis engine
        ctx: Failure context from the log provider
        client: Generator to use; when omitted an OpenAI client is created
            here and closed before returning
        out_dir: Artifact root, defaults to ``settings.output_dir``. Each run
            writes into its own new subdirectory, reported as
            ``GuardianRun.out_dir``
        settings: Engine settings, defaults to the process settings

    Returns:
        GuardianRun with either an abstain report or a patch spectrum
    """
    cfg = settings or get_settings()
    store = ArtifactStore(new_run_dir(out_dir or cfg.output_dir, ctx.run_id))
    log = logger.bind(repo=ctx.repo, run_id=ctx.run_id, out_dir=str(store.out_dir))

    try:
        ensure_patchable(ctx, cfg)
    except AbstainClassification as e:
        store.write_json(ABSTAIN_REPORT_FILE, e.report.to_dict())
        log.warning("guardian_abstained", classification=e.report.classification, evidence=e.report.evidence)
        return GuardianRun(out_dir=str(store.out_dir), analysis=analysis, abstain=e.report)

    resolve_confidence_gap(analysis.diagnosis, ctx, cfg)
    store.write_json(ANALYSIS_FILE, analysis.to_dict())
    if analysis.diagnosis.low_confidence_ambiguity:
        log.warning("diagnosis_ambiguous", guidance=analysis.diagnosis.review_guidance)

    owns_client = client is None
    generator: GeneratorClient = client if client is not None else OpenAIGeneratorClient(cfg)
    try:
        spectrum = await generate_patch_options(
            analysis, ctx, client=generator, store=store, settings=cfg
        )
    finally:
        if owns_client:
            await generator.close()

    log.info("guardian_run_finished", outcome=spectrum.outcome, recommended=spectrum.recommended_id)
    return GuardianRun(out_dir=str(store.out_dir), analysis=analysis, spectrum=spectrum)
