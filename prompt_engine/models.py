from sqlmodel import SQLModel, Field
from sqlalchemy import JSON, Column, DateTime, Index, text
from pydantic import AfterValidator, BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from typing import Annotated, Optional, List, Literal
from datetime import datetime, timezone
from enum import Enum
import uuid

def new_id() -> str:
    return uuid.uuid4().hex

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Aware UTC; naive values are taken to be UTC already (sqlite drops tzinfo)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]

def _timestamp(**kw):
    return Field(sa_type=DateTime(timezone=True), **kw)


class PromptStatus(str, Enum):
    pending = "pending"
    generating = "generating"
    ready = "ready"
    used = "used"
    dismissed = "dismissed"
    failed = "failed"


class JobStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"


ACTIVE_JOB_STATUSES = (JobStatus.pending.value, JobStatus.processing.value)
TERMINAL_JOB_STATUSES = (JobStatus.completed.value, JobStatus.failed.value, JobStatus.cancelled.value)
LISTABLE_PROMPT_STATUSES = (PromptStatus.ready.value, PromptStatus.used.value, PromptStatus.dismissed.value)


class ArtStyle(str, Enum):
    watercolor = "watercolor"
    oil_paint = "oil-paint"
    acrylic = "acrylic"


# ---------- persisted ----------

class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=new_id, primary_key=True)
    external_id: str = Field(index=True, unique=True)  # identity provider's opaque id
    created_at: datetime = _timestamp(default_factory=utcnow)


class UserPreferences(SQLModel, table=True):
    __tablename__ = "user_preferences"

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(foreign_key="users.id", ondelete="CASCADE", unique=True, index=True)
    interests: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    writing_reason: Optional[str] = None
    writing_level: Optional[str] = None
    updated_at: datetime = _timestamp(default_factory=utcnow)


class WritingPrompt(SQLModel, table=True):
    __tablename__ = "writing_prompts"

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(foreign_key="users.id", ondelete="CASCADE", index=True)
    interest: str
    hook: str
    blurb: str
    image_url: Optional[str] = None
    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    suggested_angles: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    sources: List[dict] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    art_style: Optional[str] = None
    status: str = Field(default=PromptStatus.ready.value, index=True)
    used_at: Optional[datetime] = _timestamp(default=None)
    dismissed_at: Optional[datetime] = _timestamp(default=None)
    created_at: datetime = _timestamp(default_factory=utcnow, index=True)
    updated_at: datetime = _timestamp(default_factory=utcnow)


class PromptGenerationJob(SQLModel, table=True):
    __tablename__ = "prompt_generation_jobs"
    # at most one pending/processing job per user
    __table_args__ = (
        Index(
            "uq_prompt_generation_jobs_active_user",
            "user_id",
            unique=True,
            sqlite_where=text("status IN ('pending', 'processing')"),
            postgresql_where=text("status IN ('pending', 'processing')"),
        ),
    )

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(foreign_key="users.id", ondelete="CASCADE", index=True)
    selected_interests: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    status: str = Field(default=JobStatus.pending.value, index=True)
    error: Optional[str] = None
    research_completed: int = 0
    composition_completed: int = 0
    visuals_completed: int = 0
    started_at: Optional[datetime] = _timestamp(default=None)
    completed_at: Optional[datetime] = _timestamp(default=None)
    created_at: datetime = _timestamp(default_factory=utcnow, index=True)


# ---------- transient pipeline records ----------

class ResearchSource(SQLModel):
    title: str
    url: str = ""
    snippet: str = ""


class ResearchReport(SQLModel):
    interest: str
    trends: List[str] = []
    interesting_angles: List[str] = []
    sources: List[ResearchSource] = []
    summary: str = ""
    current_events: List[str] = []
    debates_and_discussions: List[str] = []
    generated_at: datetime = Field(default_factory=utcnow)


class PromptContent(SQLModel):
    hook: str
    blurb: str
    tags: List[str] = []
    suggested_angles: List[str] = []


class GeneratedVisual(SQLModel):
    image_url: str = ""
    art_style: ArtStyle
    prompt: str
    generated_at: datetime = Field(default_factory=utcnow)


class PipelineResult(SQLModel):
    interest: str
    research: ResearchReport
    content: PromptContent
    visual: Optional[GeneratedVisual] = None
    success: bool
    error: Optional[str] = None


# ---------- API shapes (camelCase on the wire) ----------

class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class WritingPromptOut(_ApiModel):
    id: str
    user_id: str
    interest: str
    hook: str
    blurb: str
    image_url: Optional[str] = None
    tags: List[str]
    suggested_angles: List[str]
    sources: List[ResearchSource]
    art_style: Optional[str] = None
    status: str
    used_at: Optional[UtcDatetime] = None
    dismissed_at: Optional[UtcDatetime] = None
    created_at: UtcDatetime
    updated_at: UtcDatetime


class JobOut(_ApiModel):
    id: str
    user_id: str
    selected_interests: List[str]
    status: str
    error: Optional[str] = None
    research_completed: int
    composition_completed: int
    visuals_completed: int
    started_at: Optional[UtcDatetime] = None
    completed_at: Optional[UtcDatetime] = None
    created_at: UtcDatetime


class JobProgress(_ApiModel):
    total: int
    completed: int
    stage: Literal["research", "composition", "visuals", "done"]


class JobStatusOut(_ApiModel):
    job: JobOut
    progress: JobProgress
