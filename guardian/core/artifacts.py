"""
Best-effort artifact persistence for a single guardian run.

Every run writes into its own directory. Writes never raise: an unwritable
artifact is logged and the engine carries on, since artifacts exist for audit
and are not needed for correctness.
"""

from __future__ import annotations

import json
import re
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import structlog

logger = structlog.get_logger(__name__)

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")


def sanitize_candidate_name(raw: str) -> str:
    """Reduce a strategy id to a filename-safe token."""
    cleaned = _UNSAFE_NAME_CHARS.sub("-", raw or "").strip(".-")
    return cleaned or "candidate"


def new_run_dir(root: str | Path, run_id: Optional[int | str] = None) -> Path:
    """
    Return a fresh, not yet existing directory for one run under ``root``.

    The name carries the CI run id when known, a UTC timestamp and a short
    random suffix, so two runs never share a directory.
    """
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    prefix = f"run-{sanitize_candidate_name(str(run_id))}" if run_id is not None else "run"
    base = Path(root)
    while True:
        candidate = base / f"{prefix}-{stamp}-{uuid.uuid4().hex[:8]}"
        if not candidate.exists():
            return candidate


class ArtifactStore:
    """Writes run artifacts and hands out collision-free candidate names."""

    def __init__(self, out_dir: str | Path):
        self.out_dir = Path(out_dir)
        self._claimed: set[str] = set()
        self._lock = threading.Lock()

    def claim_candidate_name(self, strategy_id: str) -> str:
        """Reserve a unique, filename-safe name for a candidate."""
        base = sanitize_candidate_name(strategy_id)
        with self._lock:
            name = base
            suffix = 2
            while name in self._claimed:
                name = f"{base}-{suffix}"
                suffix += 1
            self._claimed.add(name)
        return name

    def path(self, filename: str) -> Path:
        return self.out_dir / filename

    def write_text(self, filename: str, content: str) -> Optional[Path]:
        target = self.path(filename)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        except OSError as e:
            logger.warning("artifact_write_failed", path=str(target), error=str(e))
            return None
        return target

    def write_json(self, filename: str, payload: Any) -> Optional[Path]:
        try:
            content = json.dumps(payload, indent=2, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            logger.warning("artifact_serialize_failed", filename=filename, error=str(e))
            return None
        return self.write_text(filename, content)

    # Candidate-qualified names; a name must come from claim_candidate_name
    @staticmethod
    def diff_name(candidate: str) -> str:
        return f"fix.{candidate}.patch"

    @staticmethod
    def review_name(candidate: str) -> str:
        return f"quality_review.{candidate}.json"

    @staticmethod
    def raw_review_name(candidate: str) -> str:
        return f"generator.quality.{candidate}.raw.txt"


INDEX_FILE = "patch_options.json"
ANALYSIS_FILE = "analysis.json"
ABSTAIN_REPORT_FILE = "abstain.report.json"
RAW_STRATEGIES_FILE = "generator.patch_options.raw.txt"
