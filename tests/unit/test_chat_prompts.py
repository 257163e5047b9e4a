from modelgate.chat.prompts import (
    CHAT_SYSTEM,
    Candidate,
    UserContext,
    fill_template,
    format_candidates,
    render_context,
)


def _candidate(index: int, **kwargs) -> Candidate:
    return Candidate(user_id=f"usr_{index}", username=f"tutor{index}", **kwargs)


def test_fill_template_leaves_unknown_placeholders() -> None:
    assert fill_template("{a} and {b}", a="x") == "x and {b}"
    assert fill_template("{a}", a=None) == ""


def test_render_context_defaults_and_loading_state() -> None:
    context = render_context(None, None)
    assert "Current User: Student (Unknown Major, Year N/A)" in context
    assert "Available Credits: 0" in context
    assert context.endswith("Loading tutors...")


def test_render_context_with_no_candidates() -> None:
    user = UserContext(
        username="maria", major="Information Technology", year_of_study=2, credits=15
    )
    context = render_context(user, [])
    assert "Current User: maria (Information Technology, Year 2)" in context
    assert "Available Credits: 15" in context
    assert context.endswith("No tutors available.")


def test_candidates_are_capped_at_five() -> None:
    context = render_context(UserContext(), [_candidate(i) for i in range(1, 8)])
    assert "5. tutor5 (usr_5)" in context
    assert "tutor6" not in context


def test_format_candidate_details() -> None:
    text = format_candidates(
        [
            _candidate(
                1,
                major="Mathematics",
                year_of_study=3,
                average_rating=4.8,
                total_reviews=12,
                match_score=87.6,
                dimension_scores={"time_overlap": 90.2, "rating": 96.0},
                subjects=["Calculus", "Statistics"],
                available_slots=["Mon 10:00", "Tue 14:00", "Wed 09:00", "Thu 16:00"],
            )
        ]
    )
    assert "1. tutor1 (usr_1)" in text
    assert "   - Rating: 4.8/5 (12 reviews)" in text
    assert "   - Algorithm Match Score: 88/100" in text
    assert "     * Time Overlap: 90/100" in text
    assert "     * Rating Quality: 96/100" in text
    assert "Response Speed" not in text
    assert "   - Subjects: Calculus, Statistics" in text
    assert "   - Available: Mon 10:00, Tue 14:00, Wed 09:00" in text
    assert "   - Locations: TBD" in text


def test_system_prompt_embeds_context() -> None:
    rendered = fill_template(CHAT_SYSTEM, context=render_context(None, []))
    assert "{context}" not in rendered
    assert "peer-to-peer" in rendered
    assert "No tutors available." in rendered


def test_placeholders_inside_values_are_not_expanded() -> None:
    assert fill_template("{a}-{b}", a="{b}", b="x") == "{b}-x"

    user = UserContext(username="{major}", major="IT")
    context = render_context(user, [_candidate(1, subjects=["{candidates}"])])
    assert "Current User: {major} (IT, Year N/A)" in context
    assert "   - Subjects: {candidates}" in context
