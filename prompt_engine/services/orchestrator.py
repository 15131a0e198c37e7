"""Prompt generation jobs.

A job picks a few of the user's interests, runs one pipeline per interest
concurrently in the background and saves each successful result as a
``ready`` writing prompt. Jobs move pending -> processing -> completed |
failed | cancelled and never leave a terminal status; the whole run is
bounded by ``JOB_TIMEOUT_SECONDS``.
"""
import asyncio
import logging
import random
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from prompt_engine.config import Settings
from prompt_engine.errors import ConflictError, InputValidationError, NotFoundError
from prompt_engine.models import (
    TERMINAL_JOB_STATUSES, JobOut, JobProgress, JobStatus, JobStatusOut,
    PipelineResult, PromptGenerationJob, PromptStatus, as_utc, utcnow,
)
from prompt_engine.repository import PromptRepository
from prompt_engine.services.pipeline import PipelineRunner

logger = logging.getLogger(__name__)

Submit = Callable[..., Any]


def select_interests(interests: List[str], count: int) -> List[str]:
    """Random subset of at most ``count`` distinct, non-blank interests."""
    unique = list(dict.fromkeys(i.strip() for i in interests if isinstance(i, str) and i.strip()))
    return random.sample(unique, min(count, len(unique)))


def start_of_local_day(now: Optional[datetime] = None) -> datetime:
    """Server-local midnight of ``now``, in UTC."""
    local = (now or datetime.now()).astimezone()
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.astimezone(timezone.utc)


def job_progress(job: PromptGenerationJob) -> JobProgress:
    total = len(job.selected_interests)
    completed = min(job.research_completed, job.composition_completed)
    if job.status in TERMINAL_JOB_STATUSES:
        stage = "done"
    elif completed >= total:
        stage = "visuals"
    elif job.research_completed > 0:
        stage = "composition"
    else:
        stage = "research"
    return JobProgress(total=total, completed=completed, stage=stage)


class JobQueue:
    """Background tasks on the running event loop, kept referenced until done."""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def submit(self, func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(func(*args, **kwargs))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.drain()


class PromptOrchestrator:
    def __init__(self, repository: PromptRepository, pipeline: PipelineRunner, settings: Settings,
                 queue: Optional[JobQueue] = None, sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.repository = repository
        self.pipeline = pipeline
        self.settings = settings
        self.queue = queue or JobQueue()
        self._sleep = sleep

    # ---------- starting jobs ----------

    async def generate_prompts(self, external_id: str, submit: Optional[Submit] = None) -> PromptGenerationJob:
        """Start a job for the user, or return the one already pending/processing.

        The returned job is still ``pending``; the work runs through
        ``submit(self.run_job, job_id)`` (the in-process queue by default).
        """
        user_id = self.repository.get_user_id(external_id)
        if not user_id:
            raise NotFoundError("User not found")

        existing = self.get_active_job(user_id)
        if existing:
            logger.info("Active job exists for user %s: %s", user_id, existing.id)
            return existing

        interests = self.repository.get_interests(user_id)
        selected = select_interests(interests, self.settings.INTERESTS_PER_GENERATION)
        if not selected:
            raise InputValidationError("No interests found for user")

        job = self.repository.create_job(user_id, selected)
        if job is None:
            # a concurrent request created the active job first
            existing = self.repository.get_active_job(user_id)
            if existing:
                return existing
            raise ConflictError("Could not create a generation job")

        logger.info("[%s] Created job for user %s with interests %s", job.id, user_id, selected)
        (submit or self.queue.submit)(self.run_job, job.id)
        return job

    async def regenerate_prompts(self, external_id: str, submit: Optional[Submit] = None) -> PromptGenerationJob:
        # existing ready prompts are left alone; old and new coexist
        return await self.generate_prompts(external_id, submit)

    # ---------- running jobs ----------

    async def run_job(self, job_id: str) -> None:
        """Process a job under the wall-clock ceiling; a job never stays processing."""
        job = self.repository.get_job(job_id)
        if job is None:
            logger.error("[%s] Job not found", job_id)
            return
        timeout = self.settings.JOB_TIMEOUT_SECONDS
        try:
            await asyncio.wait_for(self.process_job(job), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error("[%s] Job timed out after %gs", job_id, timeout)
            self.repository.transition_job(job_id, JobStatus.failed, f"Job timed out after {timeout:g} seconds")
        except Exception:
            logger.exception("[%s] Could not record job failure", job_id)

    async def process_job(self, job: PromptGenerationJob) -> None:
        logger.info("[%s] Starting prompt generation for %d interests", job.id, len(job.selected_interests))
        try:
            if not self.repository.transition_job(job.id, JobStatus.processing):
                logger.info("[%s] Job is no longer pending; skipping", job.id)
                return

            outcomes = await asyncio.gather(*(self._run_topic(job, interest) for interest in job.selected_interests))
            succeeded = sum(ok for ok, _ in outcomes)
            saved = sum(stored for _, stored in outcomes)
            logger.info("[%s] Completed: %d/%d pipelines successful, %d prompts saved",
                        job.id, succeeded, len(outcomes), saved)

            if succeeded:
                self.repository.transition_job(job.id, JobStatus.completed)
            else:
                self.repository.transition_job(job.id, JobStatus.failed, "All pipelines failed")
        except Exception as exc:
            logger.exception("[%s] Job processing error", job.id)
            self.repository.transition_job(job.id, JobStatus.failed, str(exc) or exc.__class__.__name__)

    async def _run_topic(self, job: PromptGenerationJob, interest: str) -> Tuple[bool, bool]:
        """(pipeline succeeded, prompt saved) for one interest."""
        result = await self.pipeline.run(interest, job.id)
        if not result.success:
            logger.warning("[%s] Pipeline failed for %s: %s", job.id, interest, result.error)
            return False, False

        status = self.repository.get_job_status(job.id)
        if status != JobStatus.processing.value:
            logger.info("[%s] Job is %s; discarding result for %s", job.id, status, interest)
            return True, False

        self.repository.bump_job_progress(job.id, research=1, composition=1, visuals=1 if result.visual else 0)
        return True, self._save_prompt(job, result)

    def _save_prompt(self, job: PromptGenerationJob, result: PipelineResult) -> bool:
        visual = result.visual
        try:
            self.repository.create_prompt(
                user_id=job.user_id,
                interest=result.interest,
                hook=result.content.hook,
                blurb=result.content.blurb,
                image_url=(visual.image_url or None) if visual else None,
                tags=result.content.tags,
                suggested_angles=result.content.suggested_angles,
                sources=[s.model_dump() for s in result.research.sources],
                art_style=visual.art_style.value if visual else None,
                status=PromptStatus.ready.value,
            )
        except Exception:
            logger.exception("[%s] Failed to save prompt for %s", job.id, result.interest)
            return False
        return True

    # ---------- status ----------

    def get_job_status(self, job_id: str) -> Optional[JobStatusOut]:
        job = self.repository.get_job(job_id)
        if job is None:
            return None
        return JobStatusOut(job=JobOut.model_validate(job), progress=job_progress(job))

    def cancel_job(self, job_id: str) -> bool:
        """Mark the job cancelled. In-flight pipeline calls are not interrupted;
        their results are discarded when they arrive."""
        cancelled = self.repository.transition_job(job_id, JobStatus.cancelled)
        if cancelled:
            logger.info("[%s] Job cancelled", job_id)
        return cancelled

    def _stale_cutoff(self) -> datetime:
        return utcnow() - timedelta(seconds=self.settings.JOB_TIMEOUT_SECONDS)

    def _fail_stale(self, job: PromptGenerationJob) -> bool:
        timeout = self.settings.JOB_TIMEOUT_SECONDS
        if self.repository.transition_job(job.id, JobStatus.failed,
                                          f"Job timed out after {timeout:g} seconds (reconciled)"):
            logger.warning("[%s] Stale job marked failed", job.id)
            return True
        return False

    def get_active_job(self, user_id: str) -> Optional[PromptGenerationJob]:
        """The user's pending/processing job, unless it outlived the job ceiling.

        Such a job was orphaned (e.g. by a restart) and is failed here so the
        user can start a new one.
        """
        job = self.repository.get_active_job(user_id)
        if job is None:
            return None
        if as_utc(job.started_at or job.created_at) < self._stale_cutoff():
            self._fail_stale(job)
            return self.repository.get_active_job(user_id)
        return job

    def reconcile_stale_jobs(self) -> int:
        """Fail pending/processing jobs that started longer ago than the job ceiling."""
        return sum(self._fail_stale(job) for job in self.repository.stale_active_jobs(self._stale_cutoff()))

    # ---------- daily sweep ----------

    async def generate_daily_prompts(self, external_id: str) -> Optional[PromptGenerationJob]:
        """Start today's job for the user; None if one was already created today."""
        user_id = self.repository.get_user_id(external_id)
        if not user_id:
            logger.info("[Daily] User not found: %s", external_id)
            return None
        if self.repository.has_job_since(user_id, start_of_local_day()):
            logger.info("[Daily] Already generated today for user: %s", user_id)
            return None
        return await self.generate_prompts(external_id)

    async def run_daily_generation_for_all_users(self) -> Dict[str, int]:
        self.reconcile_stale_jobs()
        external_ids = self.repository.users_needing_daily_prompts(start_of_local_day())
        logger.info("[Daily] Found %d users needing prompts", len(external_ids))

        succeeded = failed = 0
        size = max(1, self.settings.DAILY_BATCH_SIZE)
        for i in range(0, len(external_ids), size):
            batch = external_ids[i:i + size]
            results = await asyncio.gather(*(self.generate_daily_prompts(e) for e in batch),
                                           return_exceptions=True)
            for external_id, result in zip(batch, results):
                if isinstance(result, BaseException):
                    failed += 1
                    logger.error("[Daily] Failed for user %s: %s", external_id, result)
                elif result is not None:
                    succeeded += 1
            if i + size < len(external_ids):
                await self._sleep(self.settings.DAILY_BATCH_PAUSE_SECONDS)

        logger.info("[Daily] Completed: %d succeeded, %d failed", succeeded, failed)
        return {"processed": len(external_ids), "succeeded": succeeded, "failed": failed}
