import json
from pathlib import Path

import pytest

from guardian.agent.self_healing.quality_review import parse_quality_verdict, review_candidate
from guardian.agent.self_healing.types import RiskLevel, Strategy, Verdict
from guardian.core.artifacts import ArtifactStore
from guardian.core.errors import ErrorKind, GenerationError

GOOD = {
    "verdict": "GO",
    "slop_score": 0.1,
    "risk_level": "low",
    "reasons": ["Real fix"],
    "suggested_adjustments": ["Add a regression test"],
}


def _strategy(strategy_id="balanced"):
    return Strategy(
        id=strategy_id,
        label=strategy_id.upper(),
        risk_level=RiskLevel.LOW,
        summary="Real fix",
        diff="--- a/src/a.ts\n+++ b/src/a.ts\n@@ -1 +1 @@\n-a\n+b\n",
    )


class TestParseQualityVerdict:
    def test_valid_payload(self):
        result = parse_quality_verdict(json.dumps(GOOD))
        assert result.is_ok
        verdict = result.unwrap()
        assert verdict.verdict is Verdict.GO
        assert verdict.risk_level is RiskLevel.LOW
        assert verdict.slop_score == 0.1
        assert verdict.suggested_adjustments == ["Add a regression test"]

    def test_payload_inside_prose_and_fences(self):
        raw = "Here is my review:\n```json\n" + json.dumps(GOOD) + "\n```\nThanks."
        assert parse_quality_verdict(raw).is_ok

    def test_integer_slop_score_is_accepted(self):
        result = parse_quality_verdict(json.dumps({**GOOD, "slop_score": 1}))
        assert result.unwrap().slop_score == 1.0

    @pytest.mark.parametrize("raw", ["", "not json at all", '{"verdict": "GO", '])
    def test_unparsable_is_generation_error(self, raw):
        result = parse_quality_verdict(raw)
        assert result.kind is ErrorKind.GENERATION
        assert result.error.message.startswith("Parse error")

    @pytest.mark.parametrize("score", [1.7, -0.1, 42])
    def test_out_of_range_slop_score(self, score):
        result = parse_quality_verdict(json.dumps({**GOOD, "slop_score": score}))
        assert result.kind is ErrorKind.SCHEMA_VIOLATION
        assert "slop_score out of range" in result.error.message

    def test_nan_slop_score_is_out_of_range(self):
        raw = '{"verdict": "GO", "slop_score": NaN, "risk_level": "low", "reasons": []}'
        assert parse_quality_verdict(raw).kind is ErrorKind.SCHEMA_VIOLATION

    @pytest.mark.parametrize(
        "override",
        [
            {"verdict": "MAYBE"},
            {"risk_level": "extreme"},
            {"slop_score": "0.2"},
            {"slop_score": True},
            {"reasons": "not a list"},
        ],
    )
    def test_schema_violations(self, override):
        result = parse_quality_verdict(json.dumps({**GOOD, **override}))
        assert result.kind is ErrorKind.SCHEMA_VIOLATION

    def test_missing_field_is_schema_violation(self):
        payload = {k: v for k, v in GOOD.items() if k != "verdict"}
        assert parse_quality_verdict(json.dumps(payload)).kind is ErrorKind.SCHEMA_VIOLATION

    def test_unwrap_raises_contained_error(self):
        with pytest.raises(GenerationError):
            parse_quality_verdict("nope").unwrap()


class TestReviewCandidate:
    @pytest.mark.asyncio
    async def test_go_review_persists_raw(self, guardian_settings, out_dir, make_analysis, fake_client_factory):
        client = fake_client_factory(reviews={"balanced": GOOD})
        store = ArtifactStore(out_dir)

        outcome = await review_candidate(
            client, _strategy(), make_analysis(), store=store, candidate="balanced", settings=guardian_settings
        )

        assert outcome.verdict.verdict is Verdict.GO
        assert outcome.error_kind is None
        raw_path = Path(out_dir) / "generator.quality.balanced.raw.txt"
        assert outcome.raw_response_path == str(raw_path)
        assert json.loads(raw_path.read_text()) == GOOD
        assert client.review_calls == ["balanced"]

    @pytest.mark.asyncio
    async def test_out_of_range_fails_closed(self, guardian_settings, out_dir, make_analysis, fake_client_factory):
        client = fake_client_factory(reviews={"balanced": {"slop_score": 1.7}})

        outcome = await review_candidate(
            client,
            _strategy(),
            make_analysis(),
            store=ArtifactStore(out_dir),
            candidate="balanced",
            settings=guardian_settings,
        )

        verdict = outcome.verdict
        assert verdict.verdict is Verdict.NO_GO
        assert verdict.slop_score == 1.0
        assert verdict.risk_level is RiskLevel.HIGH
        assert any("slop_score out of range" in r for r in verdict.reasons)
        assert "Model judged patch as acceptable" in verdict.reasons
        assert outcome.error_kind is ErrorKind.SCHEMA_VIOLATION

    @pytest.mark.asyncio
    async def test_malformed_json_is_persisted_unmodified(
        self, guardian_settings, out_dir, make_analysis, fake_client_factory
    ):
        raw = '{"verdict": "GO", "slop_score": 0.1, oops'
        client = fake_client_factory(reviews={"balanced": raw})

        outcome = await review_candidate(
            client,
            _strategy(),
            make_analysis(),
            store=ArtifactStore(out_dir),
            candidate="balanced",
            settings=guardian_settings,
        )

        assert outcome.verdict.verdict is Verdict.NO_GO
        assert outcome.verdict.slop_score == 1.0
        assert outcome.verdict.risk_level is RiskLevel.HIGH
        assert outcome.verdict.reasons[-1].startswith("Parse error")
        assert outcome.error_kind is ErrorKind.GENERATION
        assert (Path(out_dir) / "generator.quality.balanced.raw.txt").read_text() == raw

    @pytest.mark.asyncio
    async def test_generator_failure_fails_closed_with_empty_raw(
        self, guardian_settings, out_dir, make_analysis, fake_client_factory
    ):
        client = fake_client_factory(reviews={"balanced": RuntimeError("upstream exploded")})

        outcome = await review_candidate(
            client,
            _strategy(),
            make_analysis(),
            store=ArtifactStore(out_dir),
            candidate="balanced",
            settings=guardian_settings,
        )

        assert outcome.verdict.verdict is Verdict.NO_GO
        assert outcome.error_kind is ErrorKind.GENERATION
        assert (Path(out_dir) / "generator.quality.balanced.raw.txt").read_text() == ""

    @pytest.mark.asyncio
    async def test_review_prompt_is_scoped_to_one_candidate(
        self, guardian_settings, out_dir, make_analysis, fake_client_factory
    ):
        client = fake_client_factory()
        await review_candidate(
            client,
            _strategy("conservative"),
            make_analysis(),
            store=ArtifactStore(out_dir),
            candidate="conservative",
            settings=guardian_settings,
        )
        prompt = client.prompts[0]
        assert '"strategy": "conservative"' in prompt
        assert "balanced" not in prompt
