"""Profile and study content generated through the gateway.

Every operation fills one prompt template, sends it with
``Gateway.generate_content`` and returns a ``ContentReply``. Failures never
raise; the reply carries a canned fallback text and the error kind instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from modelgate.chat.prompts import (
    ANSWER_FAQ,
    EXAM_PREP_ADVICE,
    GENERATE_COURSE_DESCRIPTION,
    GENERATE_MESSAGE_TEMPLATE,
    GENERATE_TUTOR_BIO,
    IMPROVE_TEXT,
    REVIEW_RESPONSE,
    STUDY_TIPS,
    fill_template,
)
from modelgate.errors import describe_error
from modelgate.gateway.orchestrator import Gateway
from modelgate.providers.base import ChatOptions

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CourseGrade:
    code: str
    grade: str = ""


@dataclass(slots=True)
class ContentReply:
    success: bool
    kind: str
    content: str
    tokens: int = 0
    cost: float = 0.0
    provider: str | None = None
    model: str | None = None
    error: str | None = None
    error_kind: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "kind": self.kind,
            "content": self.content,
            "tokens": self.tokens,
            "cost": self.cost,
            "provider": self.provider,
            "model": self.model,
            "error": self.error,
            "error_kind": self.error_kind,
        }


@dataclass(slots=True)
class TutorProfile:
    name: str = "Unknown"
    major: str = "Unknown Major"
    year: int | None = None
    school: str = "Unknown School"
    subjects: list[str] = field(default_factory=list)
    completed_courses: list[CourseGrade] = field(default_factory=list)
    teaching_style: str = "patient and encouraging"


class ContentService:
    def __init__(self, gateway: Gateway) -> None:
        self.gateway = gateway

    async def _generate(
        self, kind: str, prompt: str, options: ChatOptions, fallback: str
    ) -> ContentReply:
        try:
            result = await self.gateway.generate_content(prompt, options)
        except Exception as exc:
            info = describe_error(exc, self.gateway.active_provider_name)
            logger.warning("Content generation failed kind=%s error=%s: %s", kind, info.kind, exc)
            return ContentReply(
                success=False,
                kind=kind,
                content=fallback,
                error=info.user_message,
                error_kind=info.kind,
            )
        return ContentReply(
            success=True,
            kind=kind,
            content=result.content,
            tokens=result.tokens,
            cost=result.cost,
            provider=result.provider,
            model=result.model,
        )

    async def generate_tutor_bio(self, profile: TutorProfile) -> ContentReply:
        courses = ", ".join(
            f"{course.code} ({course.grade})" if course.grade else course.code
            for course in profile.completed_courses
        )
        prompt = fill_template(
            GENERATE_TUTOR_BIO,
            name=profile.name,
            major=profile.major,
            year=profile.year if profile.year is not None else "N/A",
            school=profile.school,
            subjects=", ".join(profile.subjects) or "Various subjects",
            courses=courses or "None specified",
            teaching_style=profile.teaching_style,
        )
        fallback = (
            f"I'm {profile.name}, a {profile.major} student passionate about helping "
            "fellow students succeed. Let's learn together!"
        )
        return await self._generate(
            "tutor_bio", prompt, ChatOptions(temperature=0.8, max_tokens=500), fallback
        )

    async def generate_course_description(
        self,
        code: str = "SUBJ101",
        name: str = "Subject",
        category: str = "General",
        level: str = "Intermediate",
        prerequisites: str = "None",
    ) -> ContentReply:
        prompt = fill_template(
            GENERATE_COURSE_DESCRIPTION,
            subject_code=code,
            subject_name=name,
            category=category,
            level=level,
            prerequisites=prerequisites,
        )
        return await self._generate(
            "course_description",
            prompt,
            ChatOptions(temperature=0.7, max_tokens=300),
            f"Learn about {name} through one-on-one tutoring sessions.",
        )

    async def generate_message(
        self,
        student_name: str = "Student",
        tutor_name: str = "Tutor",
        subject: str = "a subject",
        time: str = "a convenient time",
        location: str = "to be decided",
        message_type: str = "initial_contact",
    ) -> ContentReply:
        prompt = fill_template(
            GENERATE_MESSAGE_TEMPLATE,
            student_name=student_name,
            tutor_name=tutor_name,
            subject=subject,
            time=time,
            location=location,
            message_type=message_type,
        )
        fallback = (
            f"Hi {tutor_name}, I'm interested in booking a tutoring session for {subject}. "
            "Are you available?"
        )
        return await self._generate(
            "message", prompt, ChatOptions(temperature=0.7, max_tokens=300), fallback
        )

    async def generate_review_response(self, rating: int, comment: str) -> ContentReply:
        prompt = fill_template(REVIEW_RESPONSE, rating=rating, comment=comment)
        return await self._generate(
            "review_response",
            prompt,
            ChatOptions(temperature=0.8, max_tokens=200),
            "Thank you for your feedback! I really enjoyed our session and hope to help you "
            "again soon.",
        )

    async def improve_text(self, text: str, text_type: str = "general") -> ContentReply:
        prompt = fill_template(IMPROVE_TEXT, text=text, text_type=text_type)
        return await self._generate(
            "improve_text", prompt, ChatOptions(temperature=0.5, max_tokens=400), text
        )

    async def generate_study_tips(
        self,
        subject: str = "this subject",
        concern: str = "understanding the material",
        learning_style: str = "visual and hands-on",
    ) -> ContentReply:
        prompt = fill_template(
            STUDY_TIPS, subject=subject, concern=concern, learning_style=learning_style
        )
        return await self._generate(
            "study_tips",
            prompt,
            ChatOptions(temperature=0.7, max_tokens=600),
            "Practice regularly, take notes, and don't hesitate to ask questions.",
        )

    async def generate_exam_prep(
        self,
        subject: str = "Subject",
        exam_date: str = "upcoming",
        days_remaining: int | None = None,
        current_level: str = "intermediate",
        topics: list[str] | None = None,
    ) -> ContentReply:
        prompt = fill_template(
            EXAM_PREP_ADVICE,
            subject=subject,
            exam_date=exam_date,
            days_remaining=days_remaining if days_remaining is not None else "N/A",
            current_level=current_level,
            topics=", ".join(topics or []) or "All topics",
        )
        return await self._generate(
            "exam_prep",
            prompt,
            ChatOptions(temperature=0.6, max_tokens=800),
            "Create a study schedule, review past materials, and practice regularly.",
        )

    async def answer_faq(self, question: str, user_type: str = "student") -> ContentReply:
        perspective = (
            "Answer from a tutor's perspective"
            if user_type == "tutor"
            else "Answer from a student's perspective"
        )
        prompt = fill_template(ANSWER_FAQ, question=question, perspective=perspective)
        return await self._generate(
            "faq",
            prompt,
            ChatOptions(temperature=0.6, max_tokens=300),
            "Please check our help documentation or contact support for assistance.",
        )
