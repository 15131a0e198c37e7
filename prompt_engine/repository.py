"""Row-level reads and writes for users, prompts and generation jobs.

Every method is a single statement against the store. Status changes are
conditional updates so a terminal status is never overwritten, and the
caller learns whether the transition happened from the boolean result.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, func, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from prompt_engine.models import (
    ACTIVE_JOB_STATUSES, JobStatus, PromptGenerationJob, PromptStatus,
    User, UserPreferences, WritingPrompt, utcnow,
)

logger = logging.getLogger(__name__)


class PromptRepository:
    def __init__(self, engine: Engine):
        self.engine = engine

    # ---------- users & preferences ----------

    def get_user_id(self, external_id: str) -> Optional[str]:
        with Session(self.engine) as session:
            return session.exec(select(User.id).where(User.external_id == external_id)).first()

    def get_or_create_user(self, external_id: str) -> User:
        with Session(self.engine) as session:
            user = session.exec(select(User).where(User.external_id == external_id)).first()
            if user:
                return user
            user = User(external_id=external_id)
            session.add(user)
            try:
                session.commit()
            except IntegrityError:
                # created concurrently by another request
                session.rollback()
                return session.exec(select(User).where(User.external_id == external_id)).one()
            session.refresh(user)
            return user

    def get_preferences(self, user_id: str) -> Optional[UserPreferences]:
        with Session(self.engine) as session:
            return session.exec(select(UserPreferences).where(UserPreferences.user_id == user_id)).first()

    def get_interests(self, user_id: str) -> List[str]:
        prefs = self.get_preferences(user_id)
        return list(prefs.interests) if prefs else []

    def save_preferences(self, user_id: str, interests: List[str], writing_reason: Optional[str] = None,
                         writing_level: Optional[str] = None) -> UserPreferences:
        with Session(self.engine) as session:
            prefs = session.exec(select(UserPreferences).where(UserPreferences.user_id == user_id)).first()
            if prefs is None:
                prefs = UserPreferences(user_id=user_id)
            prefs.interests = list(interests)
            prefs.writing_reason = writing_reason
            prefs.writing_level = writing_level
            prefs.updated_at = utcnow()
            session.add(prefs); session.commit(); session.refresh(prefs)
            return prefs

    # ---------- writing prompts ----------

    def create_prompt(self, **fields: Any) -> WritingPrompt:
        prompt = WritingPrompt(**fields)
        with Session(self.engine) as session:
            session.add(prompt); session.commit(); session.refresh(prompt)
            return prompt

    def get_prompt(self, prompt_id: str) -> Optional[WritingPrompt]:
        with Session(self.engine) as session:
            return session.get(WritingPrompt, prompt_id)

    def list_prompts(self, user_id: str, statuses: Optional[Iterable[str]] = None,
                     limit: int = 10, offset: int = 0) -> List[WritingPrompt]:
        stmt = select(WritingPrompt).where(WritingPrompt.user_id == user_id)
        if statuses:
            stmt = stmt.where(col(WritingPrompt.status).in_(list(statuses)))
        stmt = stmt.order_by(col(WritingPrompt.created_at).desc(), col(WritingPrompt.id)).offset(offset).limit(limit)
        with Session(self.engine) as session:
            return list(session.exec(stmt).all())

    def transition_prompt(self, prompt_id: str, status: PromptStatus) -> bool:
        """Move a ``ready`` prompt to ``used`` or ``dismissed``; False if it was not ready."""
        now = utcnow()
        values: Dict[str, Any] = {"status": status.value, "updated_at": now}
        if status is PromptStatus.used:
            values["used_at"] = now
        elif status is PromptStatus.dismissed:
            values["dismissed_at"] = now
        stmt = (update(WritingPrompt)
                .where(col(WritingPrompt.id) == prompt_id, col(WritingPrompt.status) == PromptStatus.ready.value)
                .values(**values))
        with self.engine.begin() as conn:
            return conn.execute(stmt).rowcount == 1

    def delete_prompt(self, prompt_id: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(delete(WritingPrompt).where(col(WritingPrompt.id) == prompt_id))

    # ---------- generation jobs ----------

    def create_job(self, user_id: str, selected_interests: List[str]) -> Optional[PromptGenerationJob]:
        """Insert a pending job, or return None if the user already has an active one."""
        job = PromptGenerationJob(user_id=user_id, selected_interests=list(selected_interests))
        with Session(self.engine) as session:
            session.add(job)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                logger.info("Active job already exists for user %s", user_id)
                return None
            session.refresh(job)
            return job

    def get_job(self, job_id: str) -> Optional[PromptGenerationJob]:
        with Session(self.engine) as session:
            return session.get(PromptGenerationJob, job_id)

    def get_job_status(self, job_id: str) -> Optional[str]:
        with Session(self.engine) as session:
            return session.exec(select(PromptGenerationJob.status).where(PromptGenerationJob.id == job_id)).first()

    def get_active_job(self, user_id: str) -> Optional[PromptGenerationJob]:
        stmt = (select(PromptGenerationJob)
                .where(PromptGenerationJob.user_id == user_id,
                       col(PromptGenerationJob.status).in_(ACTIVE_JOB_STATUSES))
                .order_by(col(PromptGenerationJob.created_at).desc())
                .limit(1))
        with Session(self.engine) as session:
            return session.exec(stmt).first()

    def transition_job(self, job_id: str, status: JobStatus, error: Optional[str] = None) -> bool:
        """Apply a job state change if it is legal from the stored status.

        pending -> processing; pending|processing -> completed|failed|cancelled.
        Returns False when the job was already past that point.
        """
        now = utcnow()
        values: Dict[str, Any] = {"status": status.value}
        if status is JobStatus.processing:
            allowed = (JobStatus.pending.value,)
            values["started_at"] = now
        elif status is JobStatus.pending:
            raise ValueError("jobs cannot return to pending")
        else:
            allowed = ACTIVE_JOB_STATUSES
            values["completed_at"] = now
        if error is not None:
            values["error"] = error
        stmt = (update(PromptGenerationJob)
                .where(col(PromptGenerationJob.id) == job_id, col(PromptGenerationJob.status).in_(allowed))
                .values(**values))
        with self.engine.begin() as conn:
            return conn.execute(stmt).rowcount == 1

    def bump_job_progress(self, job_id: str, research: int = 0, composition: int = 0, visuals: int = 0) -> bool:
        """Increment stage counters of a processing job. Counters never go down."""
        if min(research, composition, visuals) < 0:
            raise ValueError("progress increments must be non-negative")
        J = PromptGenerationJob
        stmt = (update(J)
                .where(col(J.id) == job_id, col(J.status) == JobStatus.processing.value)
                .values(research_completed=col(J.research_completed) + research,
                        composition_completed=col(J.composition_completed) + composition,
                        visuals_completed=col(J.visuals_completed) + visuals))
        with self.engine.begin() as conn:
            return conn.execute(stmt).rowcount == 1

    def has_job_since(self, user_id: str, since: datetime) -> bool:
        stmt = select(func.count()).select_from(PromptGenerationJob).where(
            PromptGenerationJob.user_id == user_id, col(PromptGenerationJob.created_at) >= since)
        with Session(self.engine) as session:
            return session.exec(stmt).one() > 0

    def users_needing_daily_prompts(self, since: datetime) -> List[str]:
        """External ids of users with interests and no job created at or after ``since``."""
        had_job = select(PromptGenerationJob.user_id).where(col(PromptGenerationJob.created_at) >= since)
        stmt = (select(User.external_id, UserPreferences.interests)
                .join(UserPreferences, col(UserPreferences.user_id) == col(User.id))
                .where(col(User.id).not_in(had_job))
                .order_by(col(User.created_at)))
        with Session(self.engine) as session:
            rows = session.exec(stmt).all()
        return [external_id for external_id, interests in rows if interests]

    def stale_active_jobs(self, older_than: datetime) -> List[PromptGenerationJob]:
        started = func.coalesce(col(PromptGenerationJob.started_at), col(PromptGenerationJob.created_at))
        stmt = select(PromptGenerationJob).where(
            col(PromptGenerationJob.status).in_(ACTIVE_JOB_STATUSES), started < older_than)
        with Session(self.engine) as session:
            return list(session.exec(stmt).all())
