from fastapi import APIRouter, BackgroundTasks, Depends, Query
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from typing import Any, Dict, List, Optional
from prompt_engine.deps import get_external_id, get_orchestrator, get_repository, get_user_id
from prompt_engine.errors import ConflictError, ForbiddenError, InputValidationError, JobInProgressError, NotFoundError
from prompt_engine.models import (
    ACTIVE_JOB_STATUSES, LISTABLE_PROMPT_STATUSES, JobStatusOut, PromptStatus, WritingPrompt, WritingPromptOut,
)
from prompt_engine.repository import PromptRepository
from prompt_engine.services.orchestrator import PromptOrchestrator

router = APIRouter()

class _Out(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

class JobStarted(_Out):
    success: bool = True
    job_id: str
    status: str
    message: str

class PromptList(_Out):
    prompts: List[WritingPromptOut]
    has_more: bool

class PromptDetail(_Out):
    prompt: WritingPromptOut

class UsedPrompt(_Out):
    success: bool = True
    prompt: WritingPromptOut
    editor_data: Dict[str, Any]

def _parse_statuses(raw: Optional[str]) -> Optional[List[str]]:
    if not raw:
        return None
    statuses = [s.strip() for s in raw.split(",") if s.strip()]
    bad = [s for s in statuses if s not in LISTABLE_PROMPT_STATUSES]
    if bad:
        raise InputValidationError(f"Unknown status filter: {', '.join(bad)}",
                                   details={"allowed": list(LISTABLE_PROMPT_STATUSES)})
    return statuses or None

def _owned_prompt(prompt_id: str, user_id: str, repo: PromptRepository) -> WritingPrompt:
    prompt = repo.get_prompt(prompt_id)
    if not prompt:
        raise NotFoundError("Prompt not found")
    if prompt.user_id != user_id:
        raise ForbiddenError("Forbidden")
    return prompt

def _owned_job(job_id: str, user_id: str, repo: PromptRepository):
    job = repo.get_job(job_id)
    if not job:
        raise NotFoundError("Job not found")
    if job.user_id != user_id:
        raise ForbiddenError("Forbidden")
    return job

@router.post("", response_model=JobStarted)
async def start_generation(background_tasks: BackgroundTasks,
                           external_id: str = Depends(get_external_id),
                           orchestrator: PromptOrchestrator = Depends(get_orchestrator)):
    job = await orchestrator.generate_prompts(external_id, submit=background_tasks.add_task)
    return JobStarted(job_id=job.id, status=job.status, message="Prompt generation started")

@router.get("", response_model=PromptList)
def list_prompts(status: Optional[str] = Query(None, description="comma-separated: ready,used,dismissed"),
                 limit: int = Query(10, ge=1, le=50),
                 offset: int = Query(0, ge=0),
                 user_id: str = Depends(get_user_id),
                 repo: PromptRepository = Depends(get_repository)):
    prompts = repo.list_prompts(user_id, statuses=_parse_statuses(status), limit=limit, offset=offset)
    return PromptList(prompts=[WritingPromptOut.model_validate(p) for p in prompts], has_more=len(prompts) == limit)

@router.post("/refresh", response_model=JobStarted)
async def refresh_prompts(background_tasks: BackgroundTasks,
                          external_id: str = Depends(get_external_id),
                          user_id: str = Depends(get_user_id),
                          orchestrator: PromptOrchestrator = Depends(get_orchestrator)):
    existing = orchestrator.get_active_job(user_id)
    if existing:
        raise JobInProgressError(existing.id)
    job = await orchestrator.regenerate_prompts(external_id, submit=background_tasks.add_task)
    return JobStarted(job_id=job.id, status=job.status, message="Regenerating prompts")

@router.get("/job/{job_id}", response_model=JobStatusOut)
def job_status(job_id: str,
               user_id: str = Depends(get_user_id),
               repo: PromptRepository = Depends(get_repository),
               orchestrator: PromptOrchestrator = Depends(get_orchestrator)):
    _owned_job(job_id, user_id, repo)
    result = orchestrator.get_job_status(job_id)
    if result is None:
        raise NotFoundError("Job not found")
    return result

@router.delete("/job/{job_id}")
def cancel_job(job_id: str,
               user_id: str = Depends(get_user_id),
               repo: PromptRepository = Depends(get_repository),
               orchestrator: PromptOrchestrator = Depends(get_orchestrator)):
    job = _owned_job(job_id, user_id, repo)
    if job.status not in ACTIVE_JOB_STATUSES or not orchestrator.cancel_job(job_id):
        raise ConflictError("Job cannot be cancelled", details={"status": repo.get_job_status(job_id)})
    return {"success": True, "message": "Job cancelled"}

@router.get("/{prompt_id}", response_model=PromptDetail)
def get_prompt(prompt_id: str, user_id: str = Depends(get_user_id),
               repo: PromptRepository = Depends(get_repository)):
    return PromptDetail(prompt=WritingPromptOut.model_validate(_owned_prompt(prompt_id, user_id, repo)))

@router.post("/{prompt_id}/use", response_model=UsedPrompt)
def use_prompt(prompt_id: str, user_id: str = Depends(get_user_id),
               repo: PromptRepository = Depends(get_repository)):
    prompt = _owned_prompt(prompt_id, user_id, repo)
    if prompt.status == PromptStatus.used.value:
        raise ConflictError("Prompt already used")
    if not repo.transition_prompt(prompt_id, PromptStatus.used):
        raise ConflictError(f"Cannot use a {prompt.status} prompt")
    prompt = repo.get_prompt(prompt_id)
    out = WritingPromptOut.model_validate(prompt)
    editor_data = {
        "title": out.hook,
        "blurb": out.blurb,
        "imageUrl": out.image_url,
        "tags": out.tags,
        "interest": out.interest,
        "suggestedAngles": out.suggested_angles,
        "sources": [s.model_dump() for s in out.sources],
    }
    return UsedPrompt(prompt=out, editor_data=editor_data)

@router.post("/{prompt_id}/dismiss")
def dismiss_prompt(prompt_id: str, user_id: str = Depends(get_user_id),
                   repo: PromptRepository = Depends(get_repository)):
    prompt = _owned_prompt(prompt_id, user_id, repo)
    if prompt.status == PromptStatus.dismissed.value:
        raise ConflictError("Prompt already dismissed")
    if prompt.status == PromptStatus.used.value:
        raise ConflictError("Cannot dismiss a used prompt")
    if not repo.transition_prompt(prompt_id, PromptStatus.dismissed):
        raise ConflictError(f"Cannot dismiss a {prompt.status} prompt")
    return {"success": True, "message": "Prompt dismissed"}

@router.delete("/{prompt_id}")
def delete_prompt(prompt_id: str, user_id: str = Depends(get_user_id),
                  repo: PromptRepository = Depends(get_repository)):
    _owned_prompt(prompt_id, user_id, repo)
    repo.delete_prompt(prompt_id)
    return {"success": True}
