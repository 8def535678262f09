"""
Deterministic pattern guard for candidate diffs.

The rule table is plain data: an ordered list of ``GuardRule`` entries, each
tagged with a category. Adding a rule means appending to ``DEFAULT_RULES`` (or
to a YAML rules file) without touching ``scan_diff``. The guard never calls the
generator, so a bad candidate is rejected at zero model cost.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional

import structlog
import yaml

from guardian.core.ai.diff_utils import extract_added_lines, has_change_lines
from guardian.core.errors import PatternViolationError

logger = structlog.get_logger(__name__)


class GuardCategory(Enum):
    """Rule categories with their canonical rejection reasons."""

    SUPPRESSION = "suppression"
    PLACEHOLDER = "placeholder"
    BYPASS = "bypass"

    @property
    def reason(self) -> str:
        return CATEGORY_REASONS[self]


CATEGORY_REASONS = {
    GuardCategory.SUPPRESSION: "TS/lint suppression marker",
    GuardCategory.PLACEHOLDER: "TODO/FIXME/HACK markers",
    GuardCategory.BYPASS: "Bypass anti-pattern",
}


@dataclass(frozen=True)
class GuardRule:
    category: GuardCategory
    name: str
    matcher: re.Pattern[str]


def _rule(category: GuardCategory, name: str, pattern: str, ignore_case: bool = False) -> GuardRule:
    flags = re.IGNORECASE if ignore_case else 0
    return GuardRule(category=category, name=name, matcher=re.compile(pattern, flags))


S, P, B = GuardCategory.SUPPRESSION, GuardCategory.PLACEHOLDER, GuardCategory.BYPASS

DEFAULT_RULES: List[GuardRule] = [
    # Static analysis / type check suppression
    _rule(S, "ts_suppression", r"@ts-(?:ignore|nocheck|expect-error)\b"),
    _rule(S, "eslint_disable", r"\beslint-disable(?:-next-line|-line)?\b"),
    _rule(S, "tslint_disable", r"\btslint:disable\b"),
    _rule(S, "python_type_ignore", r"#\s*type:\s*ignore\b"),
    _rule(S, "pyright_ignore", r"#\s*pyright:\s*(?:ignore\b|basic\b|reportGeneralTypeIssues=false)"),
    _rule(S, "noqa", r"#\s*(?:(?:ruff|flake8)\s*:\s*)?noqa\b", ignore_case=True),
    _rule(S, "pylint_disable", r"#\s*pylint:\s*disable\b"),
    _rule(S, "mypy_ignore_errors", r"#\s*mypy:\s*ignore-errors\b"),
    _rule(S, "nosec", r"#\s*nosec\b"),
    _rule(S, "go_nolint", r"//\s*nolint\b"),
    _rule(S, "rubocop_disable", r"\brubocop:disable\b"),
    # Unfinished work
    _rule(P, "placeholder_marker", r"\b(?:TODO|FIXME|HACK|XXX)\b"),
    # Gate bypasses
    _rule(B, "process_exit_zero", r"process\.exit\(\s*0\s*\)"),
    _rule(B, "python_exit_zero", r"\b(?:sys\.exit|os\._exit)\(\s*0\s*\)"),
    _rule(B, "or_true", r"\|\|\s*(?:true\b|exit\s+0\b|echo\b|:(?=\s|$|[;\"']))"),
    _rule(B, "trailing_exit_zero", r";\s*exit\s+0\b"),
    _rule(
        B,
        "noop_script",
        r"\"(?:test|lint|typecheck|type-check|check|ci)\"\s*:\s*\"(?:true|exit 0|echo[^\"]*)\"",
    ),
    _rule(B, "continue_on_error", r"\bcontinue-on-error\s*:\s*(?:['\"]?true\b|\$\{\{\s*true\s*\}\})", ignore_case=True),
    _rule(B, "allow_failure", r"\ballow_failure\s*:\s*['\"]?true\b", ignore_case=True),
    _rule(B, "node_tls_reject_unauthorized", r"NODE_TLS_REJECT_UNAUTHORIZED\s*[=:]\s*['\"]?0"),
    _rule(B, "strict_ssl_disabled", r"strict-ssl\s*(?:=|\s)\s*false\b", ignore_case=True),
    _rule(
        B,
        "tls_verification_disabled",
        r"\bGIT_SSL_NO_VERIFY\b"
        r"|\bPYTHONHTTPSVERIFY\s*=\s*['\"]?0"
        r"|\bverify\s*=\s*False\b"
        r"|\brejectUnauthorized\s*:\s*false\b"
        r"|--no-check-certificate\b",
    ),
    _rule(
        B,
        "ssl_verify_disabled",
        r"\b(?:http\.)?ssl[_-]?verify(?:_?peer)?\s*(?:=|:|\s)\s*['\"]?(?:false|0|no)\b",
        ignore_case=True,
    ),
    _rule(B, "insecure_skip_verify", r"\bInsecureSkipVerify\s*:\s*true\b"),
    _rule(B, "curl_insecure", r"\bcurl\b[^\n]*?\s(?:--insecure|-[A-Za-z]*k[A-Za-z]*)(?=\s|$)"),
    _rule(
        B,
        "insecure_transport_flag",
        r"--trusted-host\b|--allow-insecure\b|--insecure-registry\b|\bGOINSECURE\b|\bGIT_ALLOW_PROTOCOL=.*\bhttp\b",
    ),
]


@dataclass(frozen=True)
class GuardMatch:
    category: GuardCategory
    rule: str
    excerpt: str


@dataclass(frozen=True)
class PatternScan:
    """All guard matches found in one diff."""

    matches: List[GuardMatch] = field(default_factory=list)

    @property
    def fired(self) -> bool:
        return bool(self.matches)

    @property
    def categories(self) -> List[GuardCategory]:
        out: List[GuardCategory] = []
        for match in self.matches:
            if match.category not in out:
                out.append(match.category)
        return out

    @property
    def reasons(self) -> List[str]:
        reasons: List[str] = []
        for match in self.matches:
            reason = f"{match.category.reason}: {match.rule}"
            if reason not in reasons:
                reasons.append(reason)
        return reasons

    def to_error(self) -> PatternViolationError:
        return PatternViolationError(
            "; ".join(self.reasons), categories=[c.value for c in self.categories]
        )


def scan_diff(diff_text: str, rules: Optional[Iterable[GuardRule]] = None) -> PatternScan:
    """
    Scan a candidate diff for banned markers.

    Only added lines are scanned, so a patch that removes a TODO is not
    punished for it. A diff without any change lines is scanned in full.
    """
    table = list(DEFAULT_RULES if rules is None else rules)
    if has_change_lines(diff_text):
        lines = extract_added_lines(diff_text)
    else:
        lines = (diff_text or "").splitlines()

    matches: List[GuardMatch] = []
    for line in lines:
        for rule in table:
            if rule.matcher.search(line):
                matches.append(
                    GuardMatch(category=rule.category, rule=rule.name, excerpt=line.strip()[:160])
                )
    return PatternScan(matches=matches)


def load_guard_rules(path: Optional[str]) -> List[GuardRule]:
    """
    Return the default rules extended with those from a YAML file.

    Expected shape::

        rules:
          - category: bypass
            name: npm_ignore_scripts
            pattern: "--ignore-scripts"
            ignore_case: false

    Entries with an unknown category or an invalid regex are skipped and logged.
    """
    rules = list(DEFAULT_RULES)
    if not path:
        return rules

    rules_path = Path(path)
    if not rules_path.exists():
        logger.warning("guard_rules_file_missing", path=path)
        return rules

    try:
        with open(rules_path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.error("guard_rules_load_failed", path=path, error=str(e))
        return rules

    if not isinstance(config, dict):
        logger.error("guard_rules_load_failed", path=path, error="top level must be a mapping")
        return rules

    for entry in config.get("rules", []) or []:
        try:
            category = GuardCategory(str(entry.get("category", "")).lower())
            rules.append(
                _rule(
                    category,
                    str(entry["name"]),
                    str(entry["pattern"]),
                    ignore_case=bool(entry.get("ignore_case", False)),
                )
            )
        except (KeyError, ValueError, AttributeError, re.error) as e:
            logger.warning("guard_rule_skipped", path=path, entry=entry, error=str(e))

    logger.info("guard_rules_loaded", path=path, total=len(rules))
    return rules
