"""Prompt templates for the chat assistant."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

MAX_PROMPT_CANDIDATES = 5

_PLACEHOLDER = re.compile(r"\{(\w+)\}")

CHAT_SYSTEM = """You are a friendly and helpful AI assistant for a peer-to-peer \
student tutoring platform.

Your role is to help students:
1. Find suitable tutors for their subjects
2. Understand how the tutoring platform works
3. Get guidance on booking sessions
4. Answer questions about courses and study tips

Guidelines:
- Be encouraging and supportive
- Use simple, clear language
- Suggest tutors based on student needs
- Keep responses concise but helpful
- Always maintain a professional yet friendly tone

Available context:
{context}"""

CONTEXT_BLOCK = """Current User: {username} ({major}, Year {year})
Available Credits: {credits}

Platform Features:
- Browse and search for peer tutors
- Book tutoring sessions
- Submit and view reviews
- Manage bookings and credits
- Send messages to tutors

Top Available Tutors:
{candidates}"""

GENERATE_TUTOR_BIO = """Write a short, friendly tutor profile bio.

Tutor details:
- Name: {name}
- Major: {major}
- Year: {year}
- School: {school}
- Subjects: {subjects}
- Completed Courses: {courses}
- Teaching Style: {teaching_style}

Requirements:
- First person perspective
- 3-4 sentences
- Highlight subject strengths and teaching style
- Warm and approachable tone
- Return only the bio text"""

GENERATE_COURSE_DESCRIPTION = """Write a concise description for a tutoring subject.

Subject: {subject_code} {subject_name}
Category: {category}
Level: {level}
Prerequisites: {prerequisites}

Requirements:
- 2-3 sentences
- Explain what students will learn and who benefits from tutoring
- Return only the description text"""

GENERATE_MESSAGE_TEMPLATE = """Write a short message from a student to a tutor.

Student: {student_name}
Tutor: {tutor_name}
Subject: {subject}
Proposed Time: {time}
Location: {location}
Message Type: {message_type}

Requirements:
- Polite and friendly
- Mention the subject, time and location
- 3-4 sentences maximum
- Return only the message text"""

REVIEW_RESPONSE = """Generate a professional, friendly response to this review:

Review Rating: {rating}/5
Review Comment: "{comment}"

Requirements:
- Thank the student sincerely
- Acknowledge specific points they mentioned
- Stay humble and professional
- Encourage future sessions
- 2-3 sentences maximum
- First person perspective"""

IMPROVE_TEXT = """Improve this {text_type} text to be more professional, clear, and engaging:

Original: "{text}"

Requirements:
- Fix grammar and spelling
- Improve clarity and flow
- Keep the same tone
- Keep it concise
- Return only the improved text, no explanations"""

STUDY_TIPS = """Give practical study tips for a student.

Subject: {subject}
Main Concern: {concern}
Learning Style: {learning_style}

Requirements:
- 5 numbered, actionable tips
- Tailor the tips to the learning style
- Encouraging tone"""

EXAM_PREP_ADVICE = """Create an exam preparation plan.

Subject: {subject}
Exam Date: {exam_date}
Days Remaining: {days_remaining}
Current Level: {current_level}
Topics: {topics}

Requirements:
- A day-by-day or week-by-week schedule that fits the days remaining
- Prioritize weaker topics first
- Include revision and practice sessions
- End with advice for the day before the exam"""

ANSWER_FAQ = """Answer this frequently asked question about the tutoring platform:

Question: "{question}"
Context: {perspective}

Platform info:
- Peer-to-peer student tutoring
- Credit-based system (no real money)
- Book sessions, leave reviews, send messages
- All tutors are fellow students

Requirements:
- Clear, concise answer (2-3 sentences)
- Friendly, helpful tone
- Include actionable advice if applicable"""


@dataclass(slots=True)
class UserContext:
    username: str = "Student"
    major: str = "Unknown Major"
    year_of_study: int | None = None
    credits: int = 0


@dataclass(slots=True)
class Candidate:
    user_id: str
    username: str
    major: str = ""
    year_of_study: int | None = None
    average_rating: float = 0.0
    total_reviews: int = 0
    match_score: float | None = None
    dimension_scores: dict[str, float] = field(default_factory=dict)
    subjects: list[str] = field(default_factory=list)
    available_slots: list[str] = field(default_factory=list)
    preferred_locations: list[str] = field(default_factory=list)


_DIMENSION_LABELS = {
    "time_overlap": "Time Overlap",
    "rating": "Rating Quality",
    "response_speed": "Response Speed",
    "same_school": "Same School",
}


def fill_template(template: str, **values: object) -> str:
    """Replace ``{key}`` placeholders in one pass; unknown braces are left untouched."""

    def _substitute(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in values:
            return match.group(0)
        value = values[key]
        return "" if value is None else str(value)

    return _PLACEHOLDER.sub(_substitute, template)


def format_candidates(candidates: list[Candidate]) -> str:
    blocks: list[str] = []
    for index, candidate in enumerate(candidates, start=1):
        lines = [
            f"{index}. {candidate.username} ({candidate.user_id})",
            f"   - Major: {candidate.major or 'N/A'}",
            f"   - Year: {candidate.year_of_study or 'N/A'}",
            f"   - Rating: {candidate.average_rating}/5 ({candidate.total_reviews} reviews)",
        ]
        if candidate.match_score is not None:
            lines.append(f"   - Algorithm Match Score: {round(candidate.match_score)}/100")
        if candidate.dimension_scores:
            lines.append("   - Dimension Scores:")
            for key, label in _DIMENSION_LABELS.items():
                if key in candidate.dimension_scores:
                    lines.append(f"     * {label}: {round(candidate.dimension_scores[key])}/100")
        lines.append(f"   - Subjects: {', '.join(candidate.subjects) or 'None'}")
        lines.append(
            f"   - Available: {', '.join(candidate.available_slots[:3]) or 'See profile'}"
        )
        lines.append(f"   - Locations: {', '.join(candidate.preferred_locations) or 'TBD'}")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def render_context(user: UserContext | None, candidates: list[Candidate] | None) -> str:
    user = user or UserContext()
    if candidates is None:
        listing = "Loading tutors..."
    else:
        listing = format_candidates(candidates[:MAX_PROMPT_CANDIDATES]) or "No tutors available."
    return fill_template(
        CONTEXT_BLOCK,
        username=user.username or "Student",
        major=user.major or "Unknown Major",
        year=user.year_of_study if user.year_of_study is not None else "N/A",
        credits=user.credits,
        candidates=listing,
    )
