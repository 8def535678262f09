import pytest

from guardian.core.errors import ErrorKind
from guardian.policy.scope import (
    OUT_OF_SCOPE_REASON,
    UNPARSEABLE_REASON,
    check_scope,
    glob_to_regex,
    normalize_repo_path,
    path_matches,
)


def _diff(*paths):
    chunks = []
    for path in paths:
        chunks.append(f"--- a/{path}\n+++ b/{path}\n@@ -1 +1 @@\n-old\n+new\n")
    return "".join(chunks)


class TestGlobSemantics:
    @pytest.mark.parametrize(
        "pattern,path,matches",
        [
            ("src/**/*.ts", "src/engine/github.ts", True),
            ("src/**/*.ts", "src/a/b/c/deep.ts", True),
            ("src/**/*.ts", "src/top.ts", True),
            ("src/**/*.ts", "lib/engine.ts", False),
            ("src/*.ts", "src/top.ts", True),
            ("src/*.ts", "src/engine/github.ts", False),
            ("package.json", "package.json", True),
            ("package.json", "packageXjson", False),  # '.' is literal
            ("file?.py", "file1.py", True),
            ("file?.py", "file12.py", False),
            ("docs/**", "docs/a/b.md", True),
            (".github/workflows/*.yml", ".github/workflows/ci.yml", True),
            ("src/[abc].ts", "src/[abc].ts", True),  # brackets are literal
            ("src/[abc].ts", "src/a.ts", False),
            ("a+b/*.txt", "a+b/x.txt", True),
            ("./src/*.ts", "src/x.ts", True),
        ],
    )
    def test_glob_matching(self, pattern, path, matches):
        assert path_matches(path, [pattern]) is matches

    def test_regex_is_anchored(self):
        assert glob_to_regex("*.ts").match("src/x.ts") is None


class TestCheckScope:
    def test_in_scope(self):
        check = check_scope(_diff("src/a.ts", "tests/a.test.ts"), ["src/**/*.ts", "tests/**/*.ts"])
        assert check.allowed
        assert check.touched_files == ["src/a.ts", "tests/a.test.ts"]
        assert check.reasons == []

    def test_out_of_scope_is_reported(self):
        check = check_scope(_diff("src/a.ts", "scripts/deploy.sh"), ["src/**/*.ts"])
        assert not check.allowed
        assert check.out_of_scope == ["scripts/deploy.sh"]
        assert check.reasons[0].startswith(OUT_OF_SCOPE_REASON)
        assert "scripts/deploy.sh" in check.reasons[0]

    def test_rename_checks_both_names(self):
        diff = "diff --git a/src/a.ts b/vendor/a.ts\nrename from src/a.ts\nrename to vendor/a.ts\n"
        check = check_scope(diff, ["src/**"])
        assert check.out_of_scope == ["vendor/a.ts"]

    def test_empty_allow_list_places_no_restriction(self):
        check = check_scope(_diff("anything/at/all.py"), [])
        assert check.allowed

    def test_unparseable_diff_with_allow_list_fails_closed(self):
        check = check_scope("+print('hi')\n", ["src/**"])
        assert not check.allowed
        assert check.reasons == [UNPARSEABLE_REASON]

    def test_duplicate_patterns_are_fine(self):
        check = check_scope(_diff("src/a.ts"), ["src/**/*.ts", "src/**/*.ts"])
        assert check.allowed

    def test_allow_list_as_json_string(self):
        check = check_scope(_diff("src/a.ts"), '["src/*.ts"]')
        assert check.allowed

    def test_to_error_carries_paths(self):
        error = check_scope(_diff("etc/passwd"), ["src/**"]).to_error()
        assert error.kind is ErrorKind.SCOPE_VIOLATION
        assert error.paths == ["etc/passwd"]


class TestPathNormalization:
    @pytest.mark.parametrize(
        "path,expected",
        [
            ("src/lib/../app.ts", "src/app.ts"),
            ("./src/./app.ts", "src/app.ts"),
            ("src/../.github/workflows/ci.ts", ".github/workflows/ci.ts"),
            ("../outside.ts", None),
            ("src/../../outside.ts", None),
            ("/etc/passwd", None),
            ("C:/Windows/system.ini", None),
        ],
    )
    def test_normalize_repo_path(self, path, expected):
        assert normalize_repo_path(path) == expected

    def test_dot_dot_cannot_escape_allow_list(self):
        path = "src/../.github/workflows/ci.ts"
        check = check_scope(_diff(path), ["src/**/*.ts"])
        assert not check.allowed
        assert check.out_of_scope == [path]

    def test_collapsed_path_inside_scope_is_allowed(self):
        assert check_scope(_diff("src/lib/../app.ts"), ["src/*.ts"]).allowed

    def test_escaping_path_rejected_without_allow_list(self):
        check = check_scope(_diff("../../home/user/.bashrc"), [])
        assert not check.allowed
        assert check.out_of_scope == ["../../home/user/.bashrc"]
