"""
Unified diff parsing utilities.
Extracts touched file paths and added lines from git-format or plain unified diffs.
"""

from __future__ import annotations

import re
from typing import List, Tuple

# Regex patterns for unified diff headers
DIFF_HEADER = re.compile(r"^diff --git (?P<old>\"?a/.+?\"?) (?P<new>\"?b/.+?\"?)$")
RENAME_OR_COPY = re.compile(r"^(?:rename|copy) (?:from|to) (?P<path>.+)$")
BINARY_FILES = re.compile(r"^Binary files (?P<old>.+?) and (?P<new>.+?) differ$")
NULL_DEVICE = "/dev/null"


def normalize_diff_path(raw: str) -> str:
    """Strip quoting, timestamps and the a/ b/ prefixes from a header path."""
    path = raw.strip()
    # '--- a/file.txt\t2024-01-01 00:00:00' style timestamps
    path = path.split("\t", 1)[0].strip()
    if len(path) >= 2 and path.startswith('"') and path.endswith('"'):
        path = path[1:-1]
    if path == NULL_DEVICE:
        return path
    if path.startswith(("a/", "b/")):
        path = path[2:]
    path = path.replace("\\", "/")
    while path.startswith("./"):
        path = path[2:]
    return path


def _is_file_header(lines: List[str], i: int) -> bool:
    """True when lines[i] is a '---' header directly followed by '+++'."""
    return (
        lines[i].startswith("--- ")
        and i + 1 < len(lines)
        and lines[i + 1].startswith("+++ ")
    )


def extract_touched_paths(diff_text: str) -> List[str]:
    """
    Return every file path a diff touches, in first-seen order.

    Covers additions, modifications, deletions, both sides of renames and
    copies, and binary file markers. The null device is discarded.
    """
    seen: List[str] = []

    def add(raw: str) -> None:
        path = normalize_diff_path(raw)
        if path and path != NULL_DEVICE and path not in seen:
            seen.append(path)

    lines = (diff_text or "").splitlines()
    i = 0
    while i < len(lines):
        line = lines[i]
        git_header = DIFF_HEADER.match(line)
        if git_header:
            add(git_header.group("old"))
            add(git_header.group("new"))
        elif _is_file_header(lines, i):
            add(line[4:])
            add(lines[i + 1][4:])
            i += 2
            continue
        else:
            rename = RENAME_OR_COPY.match(line)
            if rename:
                add(rename.group("path"))
            else:
                binary = BINARY_FILES.match(line)
                if binary:
                    add(binary.group("old"))
                    add(binary.group("new"))
        i += 1
    return seen


def extract_added_lines(diff_text: str) -> List[str]:
    """Return the content of added lines, excluding '+++' file headers."""
    lines = (diff_text or "").splitlines()
    added: List[str] = []
    i = 0
    while i < len(lines):
        if _is_file_header(lines, i):
            i += 2
            continue
        line = lines[i]
        if line.startswith("+"):
            added.append(line[1:])
        i += 1
    return added


def has_change_lines(diff_text: str) -> bool:
    """True when the diff carries at least one added or removed line."""
    _, additions, deletions = count_diff_stats(diff_text)
    return additions > 0 or deletions > 0


def count_diff_stats(diff_text: str) -> Tuple[int, int, int]:
    """
    Count files, additions, and deletions in a unified diff.

    Args:
        diff_text: Unified diff content

    Returns:
        Tuple of (num_files, additions, deletions)
    """
    lines = (diff_text or "").splitlines()
    additions = 0
    deletions = 0
    i = 0
    while i < len(lines):
        if _is_file_header(lines, i):
            i += 2
            continue
        line = lines[i]
        if line.startswith("+"):
            additions += 1
        elif line.startswith("-"):
            deletions += 1
        i += 1
    return len(extract_touched_paths(diff_text)), additions, deletions
