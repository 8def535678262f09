"""
Abstain Classifier

Decides whether a failure is something a code patch can fix at all. Failures
caused by missing credentials or token permissions are not: no diff to the
repository changes what the CI token is allowed to do.

Two disjoint tables drive the decision:
- STRONG signals: explicit authorization failures. One match abstains.
- WEAK signals: generic wording ("permission denied") that also shows up in
  ordinary test failures. Advisory unless ``weak_signal_abstain_count`` is set.
"""

from __future__ import annotations

import re
from typing import List, Optional, Tuple

import structlog

from guardian.core.config import Settings, get_settings
from guardian.core.errors import AbstainClassification

from .log_context import FailureContext
from .types import AbstainReport

logger = structlog.get_logger(__name__)

NOT_PATCHABLE = "NOT_PATCHABLE"
MAX_EVIDENCE_CHARS = 200

STRONG_SIGNALS: List[Tuple[str, re.Pattern[str]]] = [
    ("http_401", re.compile(r"\b401\b[^\n]{0,40}unauthori[sz]ed|\bunauthori[sz]ed[^\n]{0,40}\b401\b", re.I)),
    ("http_403", re.compile(r"\b403\b[^\n]{0,40}forbidden|\bforbidden[^\n]{0,40}\b403\b", re.I)),
    ("http_status_auth", re.compile(r"\bHTTP(?:/[\d.]+)?\s*(?:status\s*)?(?:code\s*)?:?\s*40[13]\b", re.I)),
    ("integration_access", re.compile(r"resource not accessible by (?:integration|personal access token)", re.I)),
    (
        "token_scope",
        re.compile(
            r"missing (?:required )?(?:token )?scopes?"
            r"|token (?:does not|doesn't) have (?:the )?(?:required )?(?:scopes?|permissions?)"
            r"|insufficient (?:token )?(?:scopes?|permissions?) for"
            r"|requires? (?:the )?[`'\"][\w:]+[`'\"] scope",
            re.I,
        ),
    ),
    ("bad_credentials", re.compile(r"\bbad credentials\b|\binvalid (?:api )?token\b|\btoken (?:has )?expired\b", re.I)),
    ("saml_enforcement", re.compile(r"SAML (?:SSO )?enforcement|re-authorize the token", re.I)),
    ("ssh_publickey", re.compile(r"permission denied \(publickey\)", re.I)),
    ("write_access_denied", re.compile(r"permission to [\w.-]+/[\w.-]+(?:\.git)? denied to", re.I)),
]

WEAK_SIGNALS: List[Tuple[str, re.Pattern[str]]] = [
    ("permission_denied", re.compile(r"permission denied(?!\s*\(publickey\))", re.I)),
    ("access_denied", re.compile(r"\baccess denied\b|\baccess is denied\b", re.I)),
    ("eacces", re.compile(r"\bEACCES\b")),
    ("eperm", re.compile(r"\bEPERM\b|operation not permitted", re.I)),
    ("unauthorized", re.compile(r"\bunauthori[sz]ed\b", re.I)),
    ("forbidden", re.compile(r"\bforbidden\b", re.I)),
]


def _excerpt_around(text: str, start: int, end: int) -> str:
    line_start = text.rfind("\n", 0, start) + 1
    line_end = text.find("\n", end)
    if line_end == -1:
        line_end = len(text)
    return text[line_start:line_end].strip()[:MAX_EVIDENCE_CHARS]


def _scan(
    text: str, table: List[Tuple[str, re.Pattern[str]]]
) -> Tuple[List[str], List[str]]:
    names: List[str] = []
    evidence: List[str] = []
    for name, pattern in table:
        match = pattern.search(text)
        if match:
            names.append(name)
            excerpt = _excerpt_around(text, match.start(), match.end())
            if excerpt and excerpt not in evidence:
                evidence.append(excerpt)
    return names, evidence


def classify_failure(
    ctx: FailureContext, settings: Optional[Settings] = None
) -> Optional[AbstainReport]:
    """
    Return an ``AbstainReport`` when the failure is not patchable, else None.

    Any STRONG signal abstains. WEAK signals abstain only when at least
    ``weak_signal_abstain_count`` distinct ones fire and that setting is on.
    Weak signals already explained by a strong one are not counted twice.
    """
    cfg = settings or get_settings()
    text = ctx.signal_text()
    if not text:
        return None

    strong, strong_evidence = _scan(text, STRONG_SIGNALS)
    weak, weak_evidence = _scan(text, WEAK_SIGNALS)

    if strong:
        report = AbstainReport(
            classification=NOT_PATCHABLE,
            reason=(
                "Authorization or permission failure detected; "
                "a code patch cannot grant the missing access"
            ),
            evidence=strong_evidence,
            strong_signals=strong,
            weak_signals=weak,
            failing_step=ctx.step,
        )
        logger.warning("abstain_strong_signal", signals=strong, step=ctx.step)
        return report

    threshold = cfg.weak_signal_abstain_count
    if threshold is not None and len(weak) >= threshold:
        report = AbstainReport(
            classification=NOT_PATCHABLE,
            reason=f"{len(weak)} weak permission signals reached the abstain threshold of {threshold}",
            evidence=weak_evidence,
            weak_signals=weak,
            failing_step=ctx.step,
        )
        logger.warning("abstain_weak_signals", signals=weak, threshold=threshold, step=ctx.step)
        return report

    if weak:
        logger.info("weak_signals_ignored", signals=weak, step=ctx.step)
    return None


def ensure_patchable(ctx: FailureContext, settings: Optional[Settings] = None) -> None:
    """Raise ``AbstainClassification`` if the failure is not patchable."""
    report = classify_failure(ctx, settings)
    if report is not None:
        raise AbstainClassification(report)
