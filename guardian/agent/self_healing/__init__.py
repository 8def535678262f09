"""
Self-healing patch guard

Components, in the order a run uses them:
- Abstain Classifier: refuse failures a patch cannot fix (auth, token scope)
- Confidence-Gap Resolver: rank hypotheses and flag ambiguous diagnoses
- Patch Spectrum Assembler: generate candidates, screen them with the scope
  validator and pattern guard, review survivors, pick a recommendation

Nothing here writes to a working tree. Candidates are certified or rejected
and left on disk as audit artifacts.
"""

from .abstain_classifier import NOT_PATCHABLE, classify_failure, ensure_patchable
from .confidence_resolver import resolve_confidence_gap
from .log_context import FailureContext
from .patch_spectrum import generate_patch_options
from .quality_review import parse_quality_verdict, review_candidate
from .run import GuardianRun, run_guardian
from .types import (
    AbstainReport,
    Analysis,
    Diagnosis,
    Hypothesis,
    PatchIndexResult,
    PatchPlan,
    PatchSpectrum,
    QualityVerdict,
    RiskLevel,
    Strategy,
    Verdict,
)

__all__ = [
    # Orchestration
    "run_guardian",
    "GuardianRun",
    # Components
    "NOT_PATCHABLE",
    "classify_failure",
    "ensure_patchable",
    "resolve_confidence_gap",
    "generate_patch_options",
    "parse_quality_verdict",
    "review_candidate",
    # Inputs
    "FailureContext",
    "Analysis",
    "Diagnosis",
    "Hypothesis",
    "PatchPlan",
    # Outputs
    "AbstainReport",
    "PatchIndexResult",
    "PatchSpectrum",
    "QualityVerdict",
    "RiskLevel",
    "Strategy",
    "Verdict",
]
