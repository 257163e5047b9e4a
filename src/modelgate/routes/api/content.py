"""Generated profile, messaging and study content."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from modelgate.chat.content import ContentService, CourseGrade, TutorProfile
from modelgate.routes.deps import get_content_service

router = APIRouter(prefix="/ai/content", tags=["api-content"])


class CourseGradeBody(BaseModel):
    code: str
    grade: str = ""


class TutorBioBody(BaseModel):
    name: str = "Unknown"
    major: str = "Unknown Major"
    year: int | None = None
    school: str = "Unknown School"
    subjects: list[str] = Field(default_factory=list)
    completed_courses: list[CourseGradeBody] = Field(default_factory=list)
    teaching_style: str = "patient and encouraging"


class CourseDescriptionBody(BaseModel):
    code: str = "SUBJ101"
    name: str = "Subject"
    category: str = "General"
    level: str = "Intermediate"
    prerequisites: str = "None"


class MessageDraftBody(BaseModel):
    student_name: str = "Student"
    tutor_name: str = "Tutor"
    subject: str = "a subject"
    time: str = "a convenient time"
    location: str = "to be decided"
    message_type: str = "initial_contact"


class ReviewResponseBody(BaseModel):
    rating: int = Field(ge=1, le=5)
    comment: str = ""


class ImproveTextBody(BaseModel):
    text: str = Field(min_length=1)
    text_type: str = "general"


class StudyTipsBody(BaseModel):
    subject: str = "this subject"
    concern: str = "understanding the material"
    learning_style: str = "visual and hands-on"


class ExamPrepBody(BaseModel):
    subject: str = "Subject"
    exam_date: str = "upcoming"
    days_remaining: int | None = Field(default=None, ge=0)
    current_level: str = "intermediate"
    topics: list[str] = Field(default_factory=list)


class FaqBody(BaseModel):
    question: str = Field(min_length=1)
    user_type: str = Field(default="student", pattern="^(student|tutor)$")


@router.post("/tutor-bio")
async def tutor_bio(
    body: TutorBioBody,
    service: ContentService = Depends(get_content_service),  # noqa: B008
) -> dict[str, object]:
    profile = TutorProfile(
        **body.model_dump(exclude={"completed_courses"}),
        completed_courses=[CourseGrade(**item.model_dump()) for item in body.completed_courses],
    )
    return (await service.generate_tutor_bio(profile)).to_dict()


@router.post("/course-description")
async def course_description(
    body: CourseDescriptionBody,
    service: ContentService = Depends(get_content_service),  # noqa: B008
) -> dict[str, object]:
    return (await service.generate_course_description(**body.model_dump())).to_dict()


@router.post("/message")
async def message_draft(
    body: MessageDraftBody,
    service: ContentService = Depends(get_content_service),  # noqa: B008
) -> dict[str, object]:
    return (await service.generate_message(**body.model_dump())).to_dict()


@router.post("/review-response")
async def review_response(
    body: ReviewResponseBody,
    service: ContentService = Depends(get_content_service),  # noqa: B008
) -> dict[str, object]:
    return (await service.generate_review_response(body.rating, body.comment)).to_dict()


@router.post("/improve")
async def improve(
    body: ImproveTextBody,
    service: ContentService = Depends(get_content_service),  # noqa: B008
) -> dict[str, object]:
    return (await service.improve_text(body.text, body.text_type)).to_dict()


@router.post("/study-tips")
async def study_tips(
    body: StudyTipsBody,
    service: ContentService = Depends(get_content_service),  # noqa: B008
) -> dict[str, object]:
    return (await service.generate_study_tips(**body.model_dump())).to_dict()


@router.post("/exam-prep")
async def exam_prep(
    body: ExamPrepBody,
    service: ContentService = Depends(get_content_service),  # noqa: B008
) -> dict[str, object]:
    return (await service.generate_exam_prep(**body.model_dump())).to_dict()


@router.post("/faq")
async def faq(
    body: FaqBody,
    service: ContentService = Depends(get_content_service),  # noqa: B008
) -> dict[str, object]:
    return (await service.answer_faq(body.question, body.user_type)).to_dict()
