"""Lambda handler, worker pool and configuration."""

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from presenter_studio.config import Credentials, OverlayStrategy, PipelineConfig, ReviewerPolicy
from presenter_studio.errors import ConfigurationError, JobCancelled, MissingInputError, StageFailed
from presenter_studio.handlers import worker
from presenter_studio.handlers.pool import JobPool
from presenter_studio.models.job import Job, JobResult


def fake_result(job, *args):
    return JobResult(job.job_id, Path("out") / f"{job.job_id}.png", f"https://assets.test/{job.job_id}.png", 320, 180)


@pytest.fixture
def pipeline():
    pipeline = MagicMock()
    pipeline.config = PipelineConfig()
    pipeline.run.side_effect = fake_result
    with patch.object(worker, "get_pipeline", return_value=pipeline):
        yield pipeline


def call(body):
    result = worker.handler({"body": json.dumps(body)}, None)
    return result["statusCode"], json.loads(result["body"])


class TestHandler:
    def test_success(self, pipeline):
        status, body = call({"job_id": "ep-1", "subject": "https://a.test/s.png", "topics": "markets"})
        assert status == 200
        assert body["job_id"] == "ep-1"
        job = pipeline.run.call_args.args[0]
        assert job.topics == ["markets"]
        assert job.object_path is None

    def test_sqs_record(self, pipeline):
        event = {"Records": [{"body": json.dumps({"job_id": "ep-2", "subject": "s.png"})}]}
        result = worker.handler(event, None)
        assert result["statusCode"] == 200

    def test_missing_subject_is_bad_request(self, pipeline):
        status, body = call({"object": "o.png"})
        assert status == 400
        assert "subject" in body["error"]

    def test_unknown_strategy_is_bad_request(self, pipeline):
        status, _ = call({"subject": "s.png", "overlay_strategy": "teleport"})
        assert status == 400

    def test_cancelled_is_conflict(self, pipeline):
        pipeline.run.side_effect = JobCancelled("job ep-3 cancelled")
        status, _ = call({"job_id": "ep-3", "subject": "s.png"})
        assert status == 409

    def test_input_errors_are_bad_request(self, pipeline):
        pipeline.run.side_effect = MissingInputError("image_too_small: s.png")
        status, _ = call({"subject": "s.png"})
        assert status == 400

    def test_other_failures_are_server_errors(self, pipeline):
        pipeline.run.side_effect = StageFailed("composite produced nothing")
        status, body = call({"subject": "s.png"})
        assert status == 500
        assert "composite" in body["error"]

    def test_batch_partial_success(self, pipeline):
        def run(job, cancel_event):
            if job.job_id == "bad":
                raise MissingInputError("image_missing")
            return fake_result(job)

        pipeline.run.side_effect = run
        status, body = call({"jobs": [
            {"job_id": "good", "subject": "s.png"},
            {"job_id": "bad", "subject": "s.png"},
        ]})
        assert status == 207
        assert body["jobs_completed"] == 1
        assert body["errors"] == [{"job_id": "bad", "error": "image_missing", "type": "MissingInputError"}]

    def test_batch_applies_per_job_strategy(self, pipeline):
        with patch.object(worker, "Pipeline") as pipeline_cls:
            pipeline_cls.return_value.run.side_effect = fake_result
            status, body = call({"jobs": [
                {"job_id": "a", "subject": "s.png", "overlay_strategy": "provided"},
                {"job_id": "b", "subject": "s.png"},
            ]})

        assert status == 200
        assert pipeline_cls.call_args.kwargs["config"].overlay_strategy == OverlayStrategy.PROVIDED
        assert pipeline_cls.return_value.run.call_args.args[0].job_id == "a"
        assert pipeline.run.call_args.args[0].job_id == "b"
        assert body["jobs_completed"] == 2

    def test_batch_with_unknown_strategy_is_bad_request(self, pipeline):
        status, _ = call({"jobs": [{"subject": "s.png", "overlay_strategy": "teleport"}]})
        assert status == 400
        pipeline.run.assert_not_called()


class TestJobPool:
    def test_outcomes_keep_input_order(self):
        pipeline = MagicMock()
        pipeline.run.side_effect = fake_result
        jobs = [Job(f"job-{i}", "s.png") for i in range(5)]

        outcomes = JobPool(pipeline, max_workers=3).run_all(jobs)

        assert [o.job_id for o in outcomes] == [j.job_id for j in jobs]
        assert all(o.ok for o in outcomes)

    def test_unexpected_error_keeps_other_results(self):
        def run(job, cancel_event):
            if job.job_id == "bad":
                raise KeyError("boom")
            return fake_result(job)

        pipeline = MagicMock()
        pipeline.run.side_effect = run

        good, bad = JobPool(pipeline).run_all([Job("good", "s.png"), Job("bad", "s.png")])

        assert good.ok
        assert not bad.ok
        assert bad.error_type == "KeyError"

    def test_cancel_is_shared_with_jobs(self):
        def run(job, cancel_event):
            if cancel_event.is_set():
                raise JobCancelled(f"job {job.job_id} cancelled")
            return fake_result(job)

        pipeline = MagicMock()
        pipeline.run.side_effect = run
        pool = JobPool(pipeline)
        pool.cancel()

        outcomes = pool.run_all([Job("job-1", "s.png")])

        assert outcomes[0].error_type == "JobCancelled"


class TestConfig:
    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("GENERATION_PROVIDER", "Gemini")
        monkeypatch.setenv("REVIEWER_UNAVAILABLE_POLICY", "permissive")
        monkeypatch.setenv("OBJECT_OVERLAY_STRATEGY", "provided")
        monkeypatch.setenv("STRICT_PLACEMENT", "0")
        monkeypatch.setenv("SIMILARITY_MIN", "0.8")
        monkeypatch.setenv("JOB_TIMEOUT_SECONDS", "120")

        config = PipelineConfig.from_env()

        assert config.generation_provider == "gemini"
        assert config.reviewer_policy == ReviewerPolicy.PERMISSIVE
        assert config.overlay_strategy == OverlayStrategy.PROVIDED
        assert config.strict_placement is False
        assert config.similarity_min == 0.8
        assert config.job_timeout == 120.0

    def test_defaults_are_strict(self, monkeypatch):
        for name in ("REVIEWER_UNAVAILABLE_POLICY", "STRICT_PLACEMENT", "ENABLE_GENERATIVE_COMPOSITE"):
            monkeypatch.delenv(name, raising=False)
        config = PipelineConfig.from_env()
        assert config.reviewer_policy == ReviewerPolicy.STRICT
        assert config.strict_placement is True
        assert config.enable_generative_composite is False

    def test_invalid_value(self, monkeypatch):
        monkeypatch.setenv("SIMILARITY_MIN", "high")
        with pytest.raises(ConfigurationError):
            PipelineConfig.from_env()

    def test_overrides_copy(self):
        config = PipelineConfig()
        changed = config.with_overrides(composite_max_attempts=7)
        assert changed.composite_max_attempts == 7
        assert config.composite_max_attempts == 5

    def test_require_lists_missing(self):
        with pytest.raises(ConfigurationError, match="asset_bucket, placid_api_token"):
            Credentials(openai_api_key="k").require("openai_api_key", "asset_bucket", "placid_api_token")
