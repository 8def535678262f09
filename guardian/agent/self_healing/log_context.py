"""
Failure context derived from already-fetched, already-redacted CI logs.

Fetching and redaction belong to the log provider; this module only turns the
text it hands over into the structured signals used by the confidence-gap
resolver and the abstain classifier.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

MAX_LOG_CHARS = 12000
MAX_TEST_FILES = 8
MAX_ASSERTION_SIGNALS = 20
SUMMARY_CHARS = 240
TRUNCATION_SEPARATOR = "\n... [middle truncated] ...\n"

RUN_GROUP = re.compile(r"##\[group\]Run ([^\r\n]+)")
EXIT_CODE = re.compile(r"Process completed with exit code (\d+)")
JEST_FAIL_LINE = re.compile(r"^\s*FAIL\s+(\S+?\.(?:test|spec)\.[jt]sx?)", re.M)
JS_STACK_FRAME = re.compile(r"\(([^()\r\n]+?\.(?:test|spec)\.[jt]sx?):\d+:\d+\)")
PYTEST_FAILED = re.compile(r"^\s*(?:FAILED|ERROR)\s+(\S+?\.py)(?:::\S+)?", re.M)
ERROR_LINE = re.compile(r"error\b|failed\b|exception\b", re.I)
ASSERTION_LINE = re.compile(
    r"^Expected(?:\s+\w+)?\s*:"
    r"|^Received(?:\s+\w+)?\s*:"
    r"|expect\(received\)\."
    r"|toBe|toContain|toThrow|toEqual"
    r"|^E\s+(?:assert|AssertionError)"
    r"|^AssertionError"
)


def build_log_excerpt(logs: str, max_chars: int = MAX_LOG_CHARS) -> str:
    """Keep the head (setup) and the tail (the actual failure) of long logs."""
    if len(logs) <= max_chars:
        return logs
    if max_chars < 200:
        return logs[-max_chars:]
    head_chars = int(max_chars * 0.35)
    tail_chars = max(0, max_chars - head_chars - len(TRUNCATION_SEPARATOR))
    return logs[:head_chars] + TRUNCATION_SEPARATOR + logs[len(logs) - tail_chars :]


def infer_step_from_log(logs: str) -> Optional[str]:
    runs = [m.strip() for m in RUN_GROUP.findall(logs) if m.strip()]
    return runs[-1] if runs else None


def extract_exit_code(logs: str) -> Optional[int]:
    match = EXIT_CODE.search(logs)
    return int(match.group(1)) if match else None


def extract_failed_test_files(logs: str) -> List[str]:
    files: List[str] = []
    for pattern in (JEST_FAIL_LINE, JS_STACK_FRAME, PYTEST_FAILED):
        for match in pattern.finditer(logs):
            if match.group(1) not in files:
                files.append(match.group(1))
    return files[:MAX_TEST_FILES]


def extract_assertion_signals(logs: str) -> List[str]:
    signals: List[str] = []
    for line in logs.splitlines():
        trimmed = line.strip()
        if trimmed and ASSERTION_LINE.search(trimmed):
            signals.append(trimmed)
            if len(signals) >= MAX_ASSERTION_SIGNALS:
                break
    return signals


def summarize_log(excerpt: str) -> str:
    """Last error-looking line, else the first three lines."""
    lines = excerpt.splitlines()
    for line in reversed(lines):
        if ERROR_LINE.search(line):
            return line.strip()[:SUMMARY_CHARS]
    return " ".join(lines[:3])[:SUMMARY_CHARS]


@dataclass
class FailureContext:
    """What the log provider knows about the failed run."""

    repo: str = ""
    run_id: Optional[int] = None
    workflow_path: Optional[str] = None
    job: Optional[str] = None
    step: Optional[str] = None
    exit_code: Optional[int] = None
    failed_test_files: List[str] = field(default_factory=list)
    assertion_signals: List[str] = field(default_factory=list)
    log_excerpt: str = ""
    log_summary: str = ""

    @classmethod
    def from_logs(
        cls,
        logs: str,
        *,
        repo: str = "",
        run_id: Optional[int] = None,
        workflow_path: Optional[str] = None,
        job: Optional[str] = None,
        step: Optional[str] = None,
        max_chars: int = MAX_LOG_CHARS,
    ) -> "FailureContext":
        excerpt = build_log_excerpt(logs, max_chars)
        return cls(
            repo=repo,
            run_id=run_id,
            workflow_path=workflow_path,
            job=job,
            step=step or infer_step_from_log(logs),
            exit_code=extract_exit_code(logs),
            failed_test_files=extract_failed_test_files(logs),
            assertion_signals=extract_assertion_signals(logs),
            log_excerpt=excerpt,
            log_summary=summarize_log(excerpt),
        )

    def signal_text(self) -> str:
        """Text the abstain classifier scans."""
        return "\n".join(part for part in (self.step, self.log_summary, self.log_excerpt) if part)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
