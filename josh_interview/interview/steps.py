"""
The interview step catalog.

Steps form a fixed total order ending in a terminal wrap step. Each question step
carries its SMS prompt, a retry prompt and a deterministic parser.
"""
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from . import parsing
from .errors import InterviewStateError
from .models import ParseResult
from .parsing import ParseContext

StepParser = Callable[[str, ParseContext], ParseResult]

DEPRECATED_STEP_ALIASES = {"intro_01": "activity_01"}


@dataclass(frozen=True)
class InterviewStep:
    """One entry of the catalog."""
    id: str
    kind: str
    prompt: str
    retry_prompt: str
    question_target: Optional[str] = None
    parser: Optional[StepParser] = None

    @property
    def is_terminal(self) -> bool:
        return self.kind == "terminal"

    def parse(self, text: str, context: Optional[ParseContext] = None) -> ParseResult:
        if self.parser is None:
            return ParseResult.failure()
        return self.parser(text, context or {})


INTERVIEW_STEP_CATALOG: Tuple[InterviewStep, ...] = (
    InterviewStep(
        id="intro_01",
        kind="question",
        prompt="Hey, I'm JOSH. I'll ask a few quick questions so I can match your vibe. Ready? Reply Yes or Later.",
        retry_prompt="Reply Yes to start, or Later if now isn't a good time.",
        question_target="onboarding_consent",
        parser=parsing.parse_intro,
    ),
    InterviewStep(
        id="activity_01",
        kind="question",
        prompt="What are 2-3 things you'd genuinely enjoy doing with new friends? (Coffee, walk, museum, climbing, games)",
        retry_prompt="I couldn't map that yet. Reply with 2-3 activities like coffee, walk, museum, climbing, or games.",
        question_target="activity_patterns",
        parser=parsing.parse_activities,
    ),
    InterviewStep(
        id="activity_02",
        kind="question",
        prompt="If you had to pick one for this week, what would it be?",
        retry_prompt="Please pick one activity for this week. You can reply with the activity name or 1/2/3.",
        question_target="top_activity_intent",
        parser=parsing.parse_top_activity,
    ),
    InterviewStep(
        id="motive_01",
        kind="question",
        prompt="What do you want that to feel like? (Deeper convo, light fun, calm reset, adventure)",
        retry_prompt="Tell me the vibe you're looking for: deeper convo, light fun, calm reset, or adventure.",
        question_target="connection_depth",
        parser=parsing.parse_motive,
    ),
    InterviewStep(
        id="motive_02",
        kind="question",
        prompt="Quick pick: A deep conversation, B easygoing laughs, C quiet recharge, D something new.",
        retry_prompt="Reply A, B, C, or D.",
        question_target="novelty_seeking",
        parser=parsing.parse_motive_quick_pick,
    ),
    InterviewStep(
        id="style_01",
        kind="question",
        prompt="When you meet new people, what's your best vibe? A curious, B funny, C thoughtful, D energetic.",
        retry_prompt="Reply A, B, C, or D.",
        question_target="social_energy",
        parser=parsing.parse_social_style,
    ),
    InterviewStep(
        id="style_02",
        kind="question",
        prompt="Do you like to talk about ideas, feelings, stories, or plans? Pick 1-2.",
        retry_prompt="Reply with 1-2: ideas, feelings, stories, plans (or A/B/C/D).",
        question_target="conversation_style",
        parser=parsing.parse_conversation_style,
    ),
    InterviewStep(
        id="pace_01",
        kind="question",
        prompt="How fast do you like friendships to move? A slow, B medium, C fast.",
        retry_prompt="Reply A, B, or C.",
        question_target="social_pace",
        parser=parsing.parse_pace,
    ),
    InterviewStep(
        id="group_01",
        kind="question",
        prompt="What size group feels best? A 2-3, B 4-6, C 7-10.",
        retry_prompt="Reply A, B, or C.",
        question_target="group_size_pref",
        parser=parsing.parse_group_size,
    ),
    InterviewStep(
        id="values_01",
        kind="question",
        prompt="How important is it that friends share your values? A very, B somewhat, C not a big deal.",
        retry_prompt="Reply A, B, or C.",
        question_target="values_alignment_importance",
        parser=parsing.parse_values,
    ),
    InterviewStep(
        id="boundaries_01",
        kind="question",
        prompt="Anything you don't want in a first hang? (Bars, late nights, super loud places, etc.)",
        retry_prompt="Share anything you'd rather avoid, or reply 'prefer not to say'.",
        question_target="boundaries_asked",
        parser=parsing.parse_boundaries,
    ),
    InterviewStep(
        id="constraints_01",
        kind="question",
        prompt="What times usually work best? A mornings, B afternoons, C evenings, D weekends only.",
        retry_prompt="Reply A, B, C, or D.",
        question_target="time_preferences",
        parser=parsing.parse_time_preferences,
    ),
    InterviewStep(
        id="location_01",
        kind="question",
        prompt="Last one: where are you based? Reply with country and state, like US-WA.",
        retry_prompt="Reply with your country and state code, like US-WA.",
        question_target="location_capture",
        parser=parsing.parse_location,
    ),
    InterviewStep(
        id="wrap_01",
        kind="terminal",
        prompt="",
        retry_prompt="",
    ),
)

INTERVIEW_STEPS: Dict[str, InterviewStep] = {step.id: step for step in INTERVIEW_STEP_CATALOG}
INTERVIEW_STEP_IDS: Tuple[str, ...] = tuple(step.id for step in INTERVIEW_STEP_CATALOG)
ACTIVE_INTERVIEW_STEP_IDS: Tuple[str, ...] = tuple(
    step.id for step in INTERVIEW_STEP_CATALOG
    if not step.is_terminal and step.id not in DEPRECATED_STEP_ALIASES
)
FIRST_ACTIVE_STEP_ID = ACTIVE_INTERVIEW_STEP_IDS[0]
WRAP_STEP_ID = "wrap_01"


def is_interview_step_id(value: object) -> bool:
    return isinstance(value, str) and value in INTERVIEW_STEPS


def normalize_interview_step_id(step_id: str) -> str:
    """Map deprecated step ids onto the step that replaced them."""
    return DEPRECATED_STEP_ALIASES.get(step_id, step_id)


def get_interview_step(step_id: str) -> InterviewStep:
    """Look up a step, raising for ids the catalog does not know."""
    step = INTERVIEW_STEPS.get(step_id)
    if step is None:
        raise InterviewStateError(f"Unknown interview step '{step_id}'.")
    return step


def question_target_for_step(step_id: str) -> str:
    return get_interview_step(step_id).question_target or "unknown"
