"""Scope enforcement: checks the files a patch touches against the plan's allow-list"""
import json
import posixpath
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, List, Optional

from guardian.core.ai.diff_utils import extract_touched_paths
from guardian.core.errors import ScopeViolationError

OUT_OF_SCOPE_REASON = "Out-of-scope file changes detected"
UNPARSEABLE_REASON = "Unable to determine touched files from diff"
_DRIVE_PREFIX = re.compile(r"^[A-Za-z]:/")


def _as_list(x: Any) -> List[str]:
    """Convert various inputs to list format"""
    if not x:
        return []
    if isinstance(x, (list, tuple)):
        return [str(item) for item in x if str(item).strip()]
    if isinstance(x, str):
        if x.strip().startswith("["):
            try:
                return [str(item) for item in json.loads(x)]
            except json.JSONDecodeError:
                return []
        return [x]
    return []


@lru_cache(maxsize=512)
def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """
    Compile an allow-list glob into an anchored regex.

    ``**`` matches across path separators (``**/`` may also match nothing),
    ``*`` stays inside one segment, ``?`` matches any single character,
    and every other character is matched literally.
    """
    glob = pattern.strip().replace("\\", "/")
    while glob.startswith("./"):
        glob = glob[2:]

    out: List[str] = []
    i = 0
    while i < len(glob):
        if glob.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
        elif glob.startswith("**", i):
            out.append(".*")
            i += 2
        elif glob[i] == "*":
            out.append("[^/]*")
            i += 1
        elif glob[i] == "?":
            out.append(".")
            i += 1
        else:
            out.append(re.escape(glob[i]))
            i += 1
    return re.compile("^" + "".join(out) + "$")


def normalize_repo_path(path: str) -> Optional[str]:
    """
    Collapse ``.`` and ``..`` segments of a repository-relative path.

    Returns None for a path that is absolute or climbs out of the repository
    root; such a path is never in scope.
    """
    raw = path.replace("\\", "/").strip()
    if not raw or raw.startswith("/") or _DRIVE_PREFIX.match(raw):
        return None
    normalized = posixpath.normpath(raw)
    if normalized == ".." or normalized.startswith("../") or normalized.startswith("/"):
        return None
    return normalized


def path_matches(path: str, patterns: List[str]) -> bool:
    normalized = normalize_repo_path(path)
    if normalized is None:
        return False
    return any(glob_to_regex(pat).match(normalized) for pat in patterns)


@dataclass(frozen=True)
class ScopeCheck:
    """Outcome of checking one diff against the allow-list."""

    touched_files: List[str]
    out_of_scope: List[str] = field(default_factory=list)
    unparseable: bool = False

    @property
    def allowed(self) -> bool:
        return not self.out_of_scope and not self.unparseable

    @property
    def reasons(self) -> List[str]:
        reasons = []
        if self.unparseable:
            reasons.append(UNPARSEABLE_REASON)
        if self.out_of_scope:
            reasons.append(f"{OUT_OF_SCOPE_REASON}: {', '.join(self.out_of_scope)}")
        return reasons

    def to_error(self) -> ScopeViolationError:
        return ScopeViolationError("; ".join(self.reasons), paths=self.out_of_scope)


def check_scope(diff_text: str, allowed_files: Any) -> ScopeCheck:
    """
    Check every path touched by ``diff_text`` against the allow-list.

    An empty allow-list places no restriction on repository paths. A
    non-empty one rejects any unmatched path, and rejects a diff with no
    parseable file headers because its scope cannot be verified. Paths that
    are absolute or leave the repository root are rejected either way.
    """
    patterns = _as_list(allowed_files)
    touched = extract_touched_paths(diff_text)
    if not patterns:
        escaping = [f for f in touched if normalize_repo_path(f) is None]
        return ScopeCheck(touched_files=touched, out_of_scope=escaping)
    if not touched:
        return ScopeCheck(touched_files=[], unparseable=True)
    out_of_scope = [f for f in touched if not path_matches(f, patterns)]
    return ScopeCheck(touched_files=touched, out_of_scope=out_of_scope)

