"""Stage orchestrator: generate -> register -> review -> fold, bounded by attempts and the job deadline."""

import logging
from pathlib import Path

from ..config import ReviewerPolicy
from ..errors import DeadlineExceeded, FallbackExhausted, ServiceError, StageFailed
from ..models.asset import CandidateAsset
from ..models.review import ReviewVerdict
from ..models.stage import Attempt, StageResult, StageRun
from ..services.assets import AssetLifecycleManager
from ..services.fallback import FallbackChainResolver
from ..services.similarity import passes_gate
from ..utils import stable_seed
from .machine import Event, advance
from .watchdog import Watchdog

logger = logging.getLogger(__name__)


class StageOrchestrator:
    """Runs one stage at a time for one job. The only writer of StageRun."""

    def __init__(
        self,
        job_id: str,
        assets: AssetLifecycleManager,
        fallbacks: FallbackChainResolver,
        watchdog: Watchdog,
        work_dir: Path,
        reviewer_policy: ReviewerPolicy = ReviewerPolicy.STRICT,
        similarity_min: float = 0.75,
    ):
        self.job_id = job_id
        self.assets = assets
        self.fallbacks = fallbacks
        self.watchdog = watchdog
        self.work_dir = Path(work_dir)
        self.reviewer_policy = reviewer_policy
        self.similarity_min = similarity_min

    def run_stage(self, driver, run: StageRun | None = None) -> StageResult:
        """
        Run a stage to acceptance, best effort, or fallback.

        Raises:
            StageFailed: Only for a terminal stage whose fallback chain is exhausted
        """
        run = run or driver.new_run()
        spec = run.spec
        tag = f"[{self.job_id}] {spec.name}"
        stage_dir = self.work_dir / spec.name
        stage_dir.mkdir(parents=True, exist_ok=True)

        for index in range(1, spec.max_attempts + 1):
            if self.watchdog.deadline.expired():
                logger.warning(f"{tag}: deadline expired before attempt {index}")
                break

            run.status = advance(run.status, Event.START)
            run.attempt_index = index
            attempt = Attempt(index=index, seed=stable_seed(self.job_id, spec.name, index))
            run.attempts.append(attempt)
            logger.info(f"{tag}: attempt {index}/{spec.max_attempts} (seed={attempt.seed})")

            try:
                path = self.watchdog.call(driver.produce, run, attempt, stage_dir / f"a{index:02d}.png")
                candidate = self.assets.register(path, spec.name, index)
            except DeadlineExceeded as e:
                attempt.error = str(e)
                run.status = advance(run.status, Event.GENERATION_FAILED)
                logger.warning(f"{tag}: attempt {index} abandoned: {e}")
                break
            except (ServiceError, OSError) as e:
                attempt.error = str(e)
                run.status = advance(run.status, Event.GENERATION_FAILED)
                logger.warning(f"{tag}: attempt {index} failed: {e}")
                continue

            attempt.candidate = candidate
            run.candidates.append(candidate)
            run.status = advance(run.status, Event.GENERATED)

            try:
                verdict = self.watchdog.call(driver.review, run, attempt, candidate)
            except DeadlineExceeded as e:
                attempt.error = str(e)
                run.status = advance(run.status, Event.REJECT)
                logger.warning(f"{tag}: review of attempt {index} abandoned: {e}")
                break

            verdict = self._apply_policy(verdict)
            integrity_failed = False
            if verdict.accept:
                verdict = self._apply_gate(driver, run, attempt, candidate, verdict)
                integrity_failed = not verdict.accept
            attempt.verdict = verdict

            if verdict.accept:
                run.status = advance(run.status, Event.ACCEPT)
                self.assets.promote(candidate)
                logger.info(f"{tag}: accepted attempt {index}{' (' + verdict.caveat + ')' if verdict.caveat else ''}")
                return StageResult(
                    stage=spec.name,
                    asset=candidate,
                    method="generated",
                    accepted=True,
                    attempts=index,
                    placement=attempt.placement,
                )

            run.status = advance(run.status, Event.REJECT)
            logger.info(f"{tag}: rejected attempt {index}: {verdict.reason or 'no reason given'}")
            if integrity_failed:
                # identity drift: no retry, no best effort, back to the untouched input
                return self._exhaust(driver, run, allow_best_effort=False)
            driver.fold(run, verdict)
            if index < spec.max_attempts:
                self.assets.discard(candidate)

        return self._exhaust(driver, run)

    def _apply_policy(self, verdict: ReviewVerdict) -> ReviewVerdict:
        """Reviewer could not be consulted: permissive accepts with a caveat, strict rejects."""
        if not verdict.unavailable:
            return verdict
        if self.reviewer_policy == ReviewerPolicy.PERMISSIVE:
            return ReviewVerdict(
                accept=True,
                reason=verdict.reason,
                unavailable=True,
                caveat=f"accepted without review ({verdict.reason})",
            )
        return verdict

    def _apply_gate(
        self,
        driver,
        run: StageRun,
        attempt: Attempt,
        candidate: CandidateAsset,
        verdict: ReviewVerdict,
    ) -> ReviewVerdict:
        """Similarity below the minimum turns an acceptance into an integrity rejection."""
        if not driver.has_gate:
            return verdict
        score = driver.gate(run, candidate)
        attempt.similarity = score
        score_text = "unmeasurable" if score is None else f"{score:.3f}"
        logger.info(f"[{self.job_id}] {run.spec.name}: similarity {score_text} (min {self.similarity_min})")
        if passes_gate(score, self.similarity_min):
            return verdict
        return ReviewVerdict(
            accept=False,
            reason=f"integrity: similarity {score_text} below {self.similarity_min}",
        )

    def _exhaust(self, driver, run: StageRun, allow_best_effort: bool = True) -> StageResult:
        spec = run.spec
        tag = f"[{self.job_id}] {spec.name}"
        run.status = advance(run.status, Event.EXHAUST)

        last = run.candidates[-1] if run.candidates else None
        if last is not None and not last.is_pending:
            last = None

        if spec.best_effort and allow_best_effort and last is not None:
            self.assets.promote(last)
            logger.info(f"{tag}: keeping attempt {last.attempt} as best effort")
            return StageResult(
                stage=spec.name,
                asset=last,
                method="best_effort",
                accepted=False,
                attempts=len(run.attempts),
                placement=self._placement_of(run, last),
            )

        if last is not None:
            self.assets.discard(last)

        run.status = advance(run.status, Event.FALL_BACK)
        try:
            asset, name = self.fallbacks.resolve(driver.fallback_context(run))
        except FallbackExhausted as e:
            if spec.terminal:
                raise StageFailed(f"{spec.name} produced nothing: {e}") from e
            logger.error(f"{tag}: {e}")
            return StageResult(
                stage=spec.name,
                asset=None,
                method="failed",
                accepted=False,
                attempts=len(run.attempts),
            )

        self.assets.promote(asset)
        return StageResult(
            stage=spec.name,
            asset=asset,
            method="fallback",
            accepted=False,
            attempts=len(run.attempts),
            fallback=name,
        )

    @staticmethod
    def _placement_of(run: StageRun, candidate: CandidateAsset):
        for attempt in run.attempts:
            if attempt.candidate is candidate:
                return attempt.placement
        return None
