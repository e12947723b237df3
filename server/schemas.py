"""Pydantic request schemas for the KalExam study API."""

from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from server.services.llm.router import ModelConfig, resolve_model_config
from study.models import ChatTurn, GenerationContext, Priority


# ---- Shared ----

class CustomModelSchema(BaseModel):
    base_url: str = ""
    api_key: str = ""
    model_name: str = ""


class GenerationContextSchema(BaseModel):
    current_chapter: Optional[str] = None
    exam_time_remaining: Optional[str] = None
    study_mode: Optional[str] = None
    exam_mode: bool = False
    user_intent: Optional[str] = None
    debug_retrieval: bool = False
    expand_query: bool = True

    def to_context(self, scope_id: Optional[str] = None) -> GenerationContext:
        return GenerationContext(
            current_chapter=self.current_chapter,
            exam_time_remaining=self.exam_time_remaining,
            study_mode=self.study_mode,
            exam_mode=self.exam_mode,
            user_intent=self.user_intent,
            enabled_source_scope_id=scope_id,
            debug_retrieval=self.debug_retrieval,
            expand_query=self.expand_query,
        )


class StudyRequest(BaseModel):
    """Fields every generation request carries."""
    scope_id: str = Field(..., min_length=1, max_length=200)
    topic: str = Field(..., min_length=1, max_length=300)
    provider: Literal["gemini", "custom"] = "gemini"
    custom_model: Optional[CustomModelSchema] = None
    context: Optional[GenerationContextSchema] = None

    def model_selection(self) -> ModelConfig:
        """Raises ValueError for an incomplete custom model."""
        custom = self.custom_model.model_dump() if self.custom_model else None
        return resolve_model_config(self.provider, custom)

    def generation_context(self) -> Optional[GenerationContext]:
        if self.context is None:
            return None
        return self.context.to_context(self.scope_id)


# ---- Endpoints ----

class TopicRequest(StudyRequest):
    priority: Priority = Priority.MEDIUM
    outline_only: bool = False


class LearnItemRequest(StudyRequest):
    item: str = Field(..., min_length=1, max_length=500)
    stream: bool = False


class ChatTurnSchema(BaseModel):
    role: Literal["user", "assistant"]
    content: str = Field(..., max_length=4000)


class AskRequest(StudyRequest):
    question: str = Field(..., min_length=1, max_length=2000)
    history: List[ChatTurnSchema] = Field(default_factory=list)
    stream: bool = False

    def chat_history(self) -> List[ChatTurn]:
        return [ChatTurn(role=turn.role, content=turn.content) for turn in self.history]


class ExamModeRequest(StudyRequest):
    pass


class MicroQuizRequest(StudyRequest):
    count: int = Field(default=4, ge=1, le=20)
