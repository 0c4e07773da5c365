"""Bounded worker pool for independent jobs."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass

from ..engine.pipeline import Pipeline
from ..errors import StudioError
from ..models.job import Job, JobResult

logger = logging.getLogger(__name__)


@dataclass
class JobOutcome:
    job_id: str
    result: JobResult | None = None
    error: str | None = None
    error_type: str | None = None

    @property
    def ok(self) -> bool:
        return self.result is not None


class JobPool:
    """Run jobs in parallel; each job stays sequential inside its own pipeline run."""

    def __init__(self, pipeline: Pipeline, max_workers: int = 2):
        self.pipeline = pipeline
        self.max_workers = max_workers
        self.cancel_event = threading.Event()

    def cancel(self) -> None:
        """Ask every running job to stop at its next stage boundary."""
        self.cancel_event.set()

    def run_all(self, jobs: list[Job], pipelines: list[Pipeline] | None = None) -> list[JobOutcome]:
        """Run jobs and return outcomes in input order.

        pipelines, when given, holds one pipeline per job (per-job overrides);
        otherwise every job uses the pool's pipeline. One job failing never
        loses the others' results.
        """
        pipelines = pipelines or [self.pipeline] * len(jobs)
        outcomes: dict[int, JobOutcome] = {}
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(pipeline.run, job, self.cancel_event): (i, job)
                for i, (job, pipeline) in enumerate(zip(jobs, pipelines))
            }
            for future in as_completed(futures):
                i, job = futures[future]
                try:
                    outcomes[i] = JobOutcome(job.job_id, result=future.result())
                except StudioError as e:
                    logger.error(f"[{job.job_id}] failed: {e}")
                    outcomes[i] = JobOutcome(job.job_id, error=str(e), error_type=type(e).__name__)
                except Exception as e:
                    logger.exception(f"[{job.job_id}] crashed: {e}")
                    outcomes[i] = JobOutcome(job.job_id, error=str(e), error_type=type(e).__name__)
        return [outcomes[i] for i in range(len(jobs))]
