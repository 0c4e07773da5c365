"""AWS Lambda handler for presenter compositing jobs."""

import json
import logging
import uuid
from pathlib import Path

from ..config import Credentials, OverlayStrategy, PipelineConfig
from ..engine.pipeline import Pipeline, build_pipeline
from ..errors import ConfigurationError, JobCancelled, MissingInputError
from ..models.job import Job
from .pool import JobPool

logger = logging.getLogger(__name__)

_pipeline: Pipeline | None = None


def get_pipeline() -> Pipeline:
    """Build the pipeline once per container."""
    global _pipeline
    if _pipeline is None:
        _pipeline = build_pipeline(PipelineConfig.from_env(), Credentials.from_env())
    return _pipeline


def job_from_payload(body: dict) -> Job:
    """Build a Job from a request payload."""
    subject = body.get("subject")
    if not subject:
        raise MissingInputError("Missing 'subject' field")
    topics = body.get("topics") or []
    if isinstance(topics, str):
        topics = [topics]
    return Job(
        job_id=str(body.get("job_id") or uuid.uuid4().hex),
        subject_path=subject,
        object_path=body.get("object") or None,
        title=str(body.get("title") or ""),
        topics=[str(t) for t in topics],
        category=str(body.get("category") or ""),
        output_dir=Path(body.get("output_dir") or "output"),
    )


def pipeline_for(body: dict) -> Pipeline:
    """Shared pipeline, or a copy with per-job overrides."""
    pipeline = get_pipeline()
    strategy = body.get("overlay_strategy")
    if not strategy:
        return pipeline
    try:
        config = pipeline.config.with_overrides(overlay_strategy=OverlayStrategy(strategy))
    except ValueError as e:
        raise ConfigurationError(f"Unknown overlay_strategy: {strategy}") from e
    return Pipeline(
        config=config,
        store=pipeline.store,
        generation=pipeline.generation,
        reviewer=pipeline.reviewer,
        prompts=pipeline.prompts,
        renderer=pipeline.renderer,
        removebg=pipeline.removebg,
    )


def handler(event, context):
    """
    AWS Lambda handler - triggered by SQS or HTTP.

    Input payload:
    {
        "job_id": "ep-142",
        "subject": "https://.../presenter.png",
        "object": "https://.../product.png",
        "title": "Winter Candle Picks",
        "topics": ["cozy home", "gifts"],
        "category": "home"
    }

    A "jobs" list of such payloads runs them in parallel.
    """
    # Handle SQS event format
    if "Records" in event:
        body = json.loads(event["Records"][0]["body"])
    else:
        body = json.loads(event.get("body", "{}"))

    try:
        if "jobs" in body:
            return _run_batch(body["jobs"])

        job = job_from_payload(body)
        logger.info(f"Processing job {job.job_id}")
        result = pipeline_for(body).run(job)
        return {
            "statusCode": 200,
            "body": json.dumps(result.to_dict()),
        }

    except (MissingInputError, ConfigurationError) as e:
        logger.error(f"Rejected request: {e}")
        return {
            "statusCode": 400,
            "body": json.dumps({"error": str(e)}),
        }
    except JobCancelled as e:
        return {
            "statusCode": 409,
            "body": json.dumps({"error": str(e)}),
        }
    except Exception as e:
        logger.exception(f"ERROR: {e}")
        return {
            "statusCode": 500,
            "body": json.dumps({"error": str(e)}),
        }


def _run_batch(payloads: list[dict]) -> dict:
    jobs = [job_from_payload(payload) for payload in payloads]
    pipelines = [pipeline_for(payload) for payload in payloads]
    pipeline = get_pipeline()
    outcomes = JobPool(pipeline, max_workers=pipeline.config.max_concurrent_jobs).run_all(jobs, pipelines)

    results = [o.result.to_dict() for o in outcomes if o.ok]
    errors = [{"job_id": o.job_id, "error": o.error, "type": o.error_type} for o in outcomes if not o.ok]

    # Determine response status
    if errors and not results:
        status_code = 500
    elif errors:
        status_code = 207  # Multi-Status (partial success)
    else:
        status_code = 200

    return {
        "statusCode": status_code,
        "body": json.dumps({
            "jobs_completed": len(results),
            "results": results,
            "errors": errors if errors else None,
        }),
    }


# Local testing
if __name__ == "__main__":
    import sys

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if len(sys.argv) < 2:
        print("Usage: python -m presenter_studio.handlers.worker <subject> [object] [title] [extra_json]")
        print()
        print("Arguments:")
        print("  subject    - presenter image (path or URL)")
        print("  object     - product image (path or URL); optional for the placement_ref strategy")
        print("  title      - episode title used for prompt context")
        print("  extra_json - JSON object with additional fields:")
        print("               {\"topics\": [...], \"category\": \"...\", \"overlay_strategy\": \"generated\"}")
        print()
        print("Example:")
        print('  python -m presenter_studio.handlers.worker presenter.png candle.png "Winter Candle Picks"')
        sys.exit(1)

    test_input = {"subject": sys.argv[1]}
    if len(sys.argv) > 2 and sys.argv[2]:
        test_input["object"] = sys.argv[2]
    if len(sys.argv) > 3:
        test_input["title"] = sys.argv[3]
    if len(sys.argv) > 4:
        test_input.update(json.loads(sys.argv[4]))

    print("Running with input:")
    print(json.dumps(test_input, indent=2))
    print()

    result = handler({"body": json.dumps(test_input)}, None)
    print("\nResult:")
    print(json.dumps(json.loads(result["body"]), indent=2))
