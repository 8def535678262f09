import json
from pathlib import Path

import pytest

from guardian.agent.self_healing import run as run_module
from guardian.agent.self_healing.abstain_classifier import (
    NOT_PATCHABLE,
    classify_failure,
    ensure_patchable,
)
from guardian.agent.self_healing.log_context import FailureContext
from guardian.agent.self_healing.run import run_guardian
from guardian.agent.self_healing.types import PatchSpectrum
from guardian.core.config import Settings
from guardian.core.errors import AbstainClassification, ErrorKind


def _ctx(summary: str, excerpt: str = "", step: str = "Run tests") -> FailureContext:
    return FailureContext(step=step, log_summary=summary, log_excerpt=excerpt)


class TestSignalTables:
    @pytest.mark.parametrize(
        "text",
        [
            "Request failed with 403 Forbidden",
            "HTTP 401 Unauthorized",
            "remote: HTTP/1.1 403",
            "resource not accessible by integration",
            "Resource not accessible by personal access token",
            "Your token does not have the required scopes",
            "missing required scopes: write:packages",
            "Bad credentials",
            "Resource protected by organization SAML enforcement",
            "git@github.com: Permission denied (publickey).",
            "remote: Permission to owner/repo.git denied to github-actions[bot].",
        ],
    )
    def test_strong_signal_abstains(self, text):
        report = classify_failure(_ctx(text), Settings())
        assert report is not None
        assert report.classification == NOT_PATCHABLE
        assert report.strong_signals
        assert report.evidence

    @pytest.mark.parametrize(
        "text",
        [
            "permission denied while opening local fixture",
            "EACCES: permission denied, open '/tmp/cache'",
            "Access denied for fixture directory",
            "expected status unauthorized but got ok",
            "AssertionError: expected 200 to equal 201",
            "",
        ],
    )
    def test_weak_or_no_signal_does_not_abstain(self, text):
        assert classify_failure(_ctx(text, step=""), Settings()) is None

    def test_weak_signals_abstain_when_threshold_configured(self):
        ctx = _ctx("permission denied", "EACCES on /var/run and operation not permitted")
        report = classify_failure(ctx, Settings(weak_signal_abstain_count=2))
        assert report is not None
        assert report.strong_signals == []
        assert len(report.weak_signals) >= 2

    def test_single_weak_signal_under_threshold(self):
        report = classify_failure(_ctx("permission denied"), Settings(weak_signal_abstain_count=2))
        assert report is None

    def test_publickey_denial_is_not_counted_as_weak(self):
        report = classify_failure(_ctx("Permission denied (publickey)."), Settings())
        assert report is not None
        assert "ssh_publickey" in report.strong_signals
        assert "permission_denied" not in report.weak_signals

    def test_report_records_failing_step(self):
        report = classify_failure(_ctx("403 Forbidden", step="Publish package"), Settings())
        assert report.failing_step == "Publish package"

    def test_ensure_patchable_raises_with_report(self):
        with pytest.raises(AbstainClassification) as exc_info:
            ensure_patchable(_ctx("403 Forbidden"), Settings())
        assert exc_info.value.kind is ErrorKind.ABSTAIN
        assert exc_info.value.report.classification == NOT_PATCHABLE

    def test_ensure_patchable_passes_on_clean_context(self):
        ensure_patchable(_ctx("TypeError: cannot read property 'x' of undefined"), Settings())


class TestRunAbstainPolicy:
    @pytest.mark.asyncio
    async def test_strong_signal_skips_generation(
        self, guardian_settings, out_dir, make_analysis, fake_client_factory
    ):
        client = fake_client_factory()
        ctx = _ctx("Request failed with 403 Forbidden", "resource not accessible by integration")

        result = await run_guardian(
            make_analysis(), ctx, client=client, out_dir=out_dir, settings=guardian_settings
        )

        assert result.outcome == "abstained"
        assert result.abstain.classification == NOT_PATCHABLE
        assert result.spectrum is None
        assert client.prompts == []
        run_dir = Path(result.out_dir)
        assert run_dir.parent == Path(out_dir)
        report_path = run_dir / "abstain.report.json"
        assert report_path.exists()
        assert json.loads(report_path.read_text())["classification"] == NOT_PATCHABLE
        assert not (run_dir / "patch_options.json").exists()

    @pytest.mark.asyncio
    async def test_single_weak_signal_proceeds_to_generation(
        self, monkeypatch, guardian_settings, out_dir, make_analysis, fake_client_factory
    ):
        calls = []

        async def _fake_generate(analysis, ctx, **kwargs):
            calls.append((analysis, ctx))
            return PatchSpectrum(results=[], ranking=[], recommended_id=None)

        monkeypatch.setattr(run_module, "generate_patch_options", _fake_generate)
        ctx = _ctx("permission denied while opening local fixture", "single weak signal only")

        result = await run_guardian(
            make_analysis(), ctx, client=fake_client_factory(), out_dir=out_dir, settings=guardian_settings
        )

        assert result.abstain is None
        assert len(calls) == 1
        assert result.outcome == "no_safe_patch"
        assert not (Path(result.out_dir) / "abstain.report.json").exists()

    @pytest.mark.asyncio
    async def test_each_run_gets_its_own_directory(
        self, guardian_settings, make_analysis, fake_client_factory
    ):
        blocked = await run_guardian(
            make_analysis(),
            _ctx("Request failed with 403 Forbidden"),
            client=fake_client_factory(),
            settings=guardian_settings,
        )
        strategy = {
            "id": "balanced",
            "risk_level": "low",
            "diff": "--- a/src/app.ts\n+++ b/src/app.ts\n@@ -1 +1 @@\n-const a = 0;\n+const a = 1;\n",
        }
        patched = await run_guardian(
            make_analysis(),
            _ctx("expected 1 to equal 0"),
            client=fake_client_factory(strategies=[strategy]),
            settings=guardian_settings,
        )

        assert blocked.outcome == "abstained"
        assert patched.outcome == "patch_available"
        assert blocked.out_dir != patched.out_dir
        assert Path(blocked.out_dir).parent == Path(guardian_settings.output_dir)
        assert sorted(p.name for p in Path(blocked.out_dir).iterdir()) == ["abstain.report.json"]
        patched_files = {p.name for p in Path(patched.out_dir).iterdir()}
        assert "patch_options.json" in patched_files
        assert "abstain.report.json" not in patched_files
