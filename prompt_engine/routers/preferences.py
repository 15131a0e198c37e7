from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import List, Optional
from prompt_engine.deps import get_external_id, get_repository
from prompt_engine.repository import PromptRepository

router = APIRouter()

class PreferencesPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    interests: List[str] = Field(default_factory=list, max_length=50, description="topics to research")
    writing_reason: Optional[str] = None
    writing_level: Optional[str] = None

    @field_validator("interests")
    @classmethod
    def _clean(cls, value: List[str]) -> List[str]:
        return list(dict.fromkeys(v.strip() for v in value if v.strip()))

def _out(prefs) -> dict:
    if prefs is None:
        return {"interests": [], "writingReason": None, "writingLevel": None}
    return {"interests": prefs.interests, "writingReason": prefs.writing_reason, "writingLevel": prefs.writing_level}

@router.get("")
def get_preferences(external_id: str = Depends(get_external_id),
                    repo: PromptRepository = Depends(get_repository)):
    user_id = repo.get_user_id(external_id)
    return _out(repo.get_preferences(user_id) if user_id else None)

@router.put("")
def save_preferences(payload: PreferencesPayload,
                     external_id: str = Depends(get_external_id),
                     repo: PromptRepository = Depends(get_repository)):
    user = repo.get_or_create_user(external_id)
    prefs = repo.save_preferences(user.id, payload.interests, payload.writing_reason, payload.writing_level)
    return _out(prefs)
