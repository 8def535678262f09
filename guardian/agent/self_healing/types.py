"""
Type definitions for the patch guard engine.

Domain records are dataclasses with ``to_dict`` helpers for artifact
serialization. Generator payloads are validated with pydantic models before
anything in them is trusted.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class Verdict(Enum):
    GO = "GO"
    NO_GO = "NO_GO"


class RiskLevel(Enum):
    """Risk tiers, ordered low < medium < high."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]

    @staticmethod
    def highest(*levels: "RiskLevel") -> "RiskLevel":
        return max(levels, key=lambda level: level.rank)


_RISK_RANK = {RiskLevel.LOW: 0, RiskLevel.MEDIUM: 1, RiskLevel.HIGH: 2}


def _as_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    return [str(value)]


def coerce_confidence(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if number != number:  # NaN
        return 0.0
    return min(1.0, max(0.0, number))


@dataclass
class Hypothesis:
    """One candidate root cause proposed by the diagnosis engine."""

    id: str
    title: str = ""
    category: str = "unknown"
    confidence: float = 0.0
    evidence: List[str] = field(default_factory=list)
    disconfirming: List[str] = field(default_factory=list)
    next_check: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Hypothesis":
        return cls(
            id=str(data.get("id", "")),
            title=str(data.get("title", "")),
            category=str(data.get("category", "unknown")),
            confidence=coerce_confidence(data.get("confidence")),
            evidence=_as_str_list(data.get("evidence")),
            disconfirming=_as_str_list(
                data.get("disconfirming", data.get("disconfirming_evidence"))
            ),
            next_check=str(data.get("next_check", "")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Diagnosis:
    """
    Ranked root-cause hypotheses for one failed run.

    Read-only input except for a single in-place pass by the confidence-gap
    resolver, which fills the derived fields below.
    """

    hypotheses: List[Hypothesis] = field(default_factory=list)
    selected_hypothesis_id: str = ""
    category: str = "unknown"
    root_cause: str = ""
    evidence: List[str] = field(default_factory=list)
    confidence_score: float = 0.0
    low_confidence_ambiguity: bool = False
    confidence_gap: float = 0.0
    review_guidance: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Diagnosis":
        return cls(
            hypotheses=[Hypothesis.from_dict(h) for h in data.get("hypotheses", []) or []],
            selected_hypothesis_id=str(data.get("selected_hypothesis_id", "")),
            category=str(data.get("category", "unknown")),
            root_cause=str(data.get("root_cause", "")),
            evidence=_as_str_list(data.get("evidence")),
            confidence_score=coerce_confidence(data.get("confidence_score")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PatchPlan:
    intent: str = ""
    allowed_files: List[str] = field(default_factory=list)  # glob patterns, may repeat
    strategy: Union[str, List[str]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PatchPlan":
        strategy = data.get("strategy", [])
        return cls(
            intent=str(data.get("intent", "")),
            allowed_files=_as_str_list(data.get("allowed_files")),
            strategy=strategy if isinstance(strategy, str) else _as_str_list(strategy),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Analysis:
    """Diagnosis plus patch plan, as handed over by the diagnosis engine."""

    diagnosis: Diagnosis
    patch_plan: PatchPlan

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Analysis":
        return cls(
            diagnosis=Diagnosis.from_dict(data.get("diagnosis", {}) or {}),
            patch_plan=PatchPlan.from_dict(data.get("patch_plan", {}) or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"diagnosis": self.diagnosis.to_dict(), "patch_plan": self.patch_plan.to_dict()}


@dataclass(frozen=True)
class Strategy:
    """One candidate patch at a declared risk tier. Immutable once generated."""

    id: str
    label: str
    risk_level: RiskLevel
    summary: str
    diff: str
    position: int = 0  # generation order, used for tie-breaks

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result["risk_level"] = self.risk_level.value
        return result


@dataclass(frozen=True)
class QualityVerdict:
    verdict: Verdict
    slop_score: float
    risk_level: RiskLevel
    reasons: List[str] = field(default_factory=list)
    suggested_adjustments: List[str] = field(default_factory=list)

    @classmethod
    def fail_closed(cls, reasons: List[str]) -> "QualityVerdict":
        return cls(
            verdict=Verdict.NO_GO,
            slop_score=1.0,
            risk_level=RiskLevel.HIGH,
            reasons=list(reasons),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "verdict": self.verdict.value,
            "slop_score": self.slop_score,
            "risk_level": self.risk_level.value,
            "reasons": list(self.reasons),
            "suggested_adjustments": list(self.suggested_adjustments),
        }


@dataclass(frozen=True)
class PatchIndexResult:
    """Final, merged verdict for one candidate."""

    id: str
    label: str
    verdict: Verdict
    risk_level: RiskLevel
    slop_score: float
    files: List[str]
    reasons: List[str]
    declared_risk_level: RiskLevel = RiskLevel.HIGH
    summary: str = ""
    position: int = 0
    error_kind: Optional[str] = None
    review_skipped: bool = False
    diff_path: Optional[str] = None
    review_path: Optional[str] = None
    raw_response_path: Optional[str] = None

    @property
    def is_go(self) -> bool:
        return self.verdict is Verdict.GO

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result["verdict"] = self.verdict.value
        result["risk_level"] = self.risk_level.value
        result["declared_risk_level"] = self.declared_risk_level.value
        return result


@dataclass(frozen=True)
class AbstainReport:
    """Record of the decision to produce no patch for this failure."""

    classification: str
    reason: str
    evidence: List[str]
    strong_signals: List[str] = field(default_factory=list)
    weak_signals: List[str] = field(default_factory=list)
    failing_step: Optional[str] = None
    created_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PatchSpectrum:
    """Ordered index of every evaluated candidate plus the recommendation."""

    results: List[PatchIndexResult]
    ranking: List[str]
    recommended_id: Optional[str]
    discarded_strategies: List[Dict[str, Any]] = field(default_factory=list)
    generation_error: Optional[str] = None
    generated_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    NO_SAFE_PATCH_MESSAGE = (
        "No safe patch available: every candidate was rejected. Manual intervention required."
    )

    @property
    def outcome(self) -> str:
        return "patch_available" if self.recommended_id else "no_safe_patch"

    @property
    def recommended(self) -> Optional[PatchIndexResult]:
        for result in self.results:
            if result.id == self.recommended_id and result.is_go:
                return result
        return None

    def get(self, strategy_id: str) -> Optional[PatchIndexResult]:
        for result in self.results:
            if result.id == strategy_id:
                return result
        return None

    def to_dict(self) -> Dict[str, Any]:
        recommended = self.recommended
        return {
            "generated_at": self.generated_at,
            "outcome": self.outcome,
            "message": (
                f"Recommended patch: {recommended.id} ({recommended.risk_level.value} risk)"
                if recommended
                else self.NO_SAFE_PATCH_MESSAGE
            ),
            "recommended_id": self.recommended_id,
            "ranking": list(self.ranking),
            "results": [r.to_dict() for r in self.results],
            "discarded_strategies": list(self.discarded_strategies),
            "generation_error": self.generation_error,
        }


# --- Generator payload schemas ---------------------------------------------


class StrategyPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    label: str = ""
    risk_level: Literal["low", "medium", "high"]
    summary: str = ""
    diff: str


class StrategiesPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    strategies: List[Any]


class QualityVerdictPayload(BaseModel):
    """Shape of one model review. Range checks on slop_score happen afterwards."""

    model_config = ConfigDict(extra="ignore")

    verdict: Literal["GO", "NO_GO"]
    slop_score: float = Field(strict=True)
    risk_level: Literal["low", "medium", "high"]
    reasons: List[str] = Field(default_factory=list)
    suggested_adjustments: List[str] = Field(default_factory=list)
