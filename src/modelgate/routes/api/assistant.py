"""Tutoring assistant routes backed by the chat service."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from modelgate.chat.prompts import Candidate, UserContext
from modelgate.chat.service import ChatService
from modelgate.providers.base import ChatMessage
from modelgate.routes.api.ai import OptionsBody, to_options
from modelgate.routes.deps import get_chat_service

router = APIRouter(prefix="/ai/assistant", tags=["api-assistant"])


class UserBody(BaseModel):
    username: str = "Student"
    major: str = "Unknown Major"
    year_of_study: int | None = None
    credits: int = 0


class CandidateBody(BaseModel):
    user_id: str
    username: str
    major: str = ""
    year_of_study: int | None = None
    average_rating: float = 0.0
    total_reviews: int = 0
    match_score: float | None = None
    dimension_scores: dict[str, float] = Field(default_factory=dict)
    subjects: list[str] = Field(default_factory=list)
    available_slots: list[str] = Field(default_factory=list)
    preferred_locations: list[str] = Field(default_factory=list)


class HistoryItem(BaseModel):
    role: str = Field(pattern="^(user|assistant)$")
    content: str


class AssistantBody(BaseModel):
    text: str = Field(min_length=1)
    user: UserBody | None = None
    candidates: list[CandidateBody] | None = None
    history: list[HistoryItem] = Field(default_factory=list)
    options: OptionsBody | None = None


@router.post("/message")
async def send_message(
    body: AssistantBody,
    service: ChatService = Depends(get_chat_service),  # noqa: B008
) -> dict[str, object]:
    reply = await service.send_message(
        body.text,
        UserContext(**body.user.model_dump()) if body.user else None,
        [Candidate(**item.model_dump()) for item in body.candidates]
        if body.candidates is not None
        else None,
        [ChatMessage(role=item.role, content=item.content) for item in body.history],
        to_options(body.options) if body.options else None,
    )
    return {**reply.to_dict(), "intent": service.analyze_intent(body.text)}


@router.post("/suggestions")
def suggestions(
    body: UserBody | None = None,
    service: ChatService = Depends(get_chat_service),  # noqa: B008
) -> dict[str, object]:
    user = UserContext(**body.model_dump()) if body else None
    return {"items": service.suggested_questions(user)}
