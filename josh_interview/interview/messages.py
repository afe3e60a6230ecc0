"""
Fixed SMS copy sent by the interview engine.

Kept apart from the state machine so copy edits never touch control flow.
"""

INTERVIEW_MESSAGES_VERSION = "v1"

INTERVIEW_WRAP_MESSAGE = (
    "That's everything. Your profile is set. I now have a real sense of your style "
    "— the kinds of plans you'd enjoy, how you like to connect, and what a good "
    "match looks like for you. Whenever you're ready to do something, just text me "
    "naturally. Something like 'I’m free Saturday morning' or 'I want to go "
    "skiing this weekend' and I'll take it from there."
)

ALREADY_COMPLETE_PROFILE_MESSAGE = "You're all set. If you want to tweak your profile, text me what to change."

INTERVIEW_PAUSE_MESSAGE = "No problem. Text me whenever you're ready and I'll pick up right here."

INTERVIEW_DROPOUT_RESUME = "Welcome back. Picking up from where we left off."

INTERVIEW_DROPOUT_NUDGE_TEMPLATE = (
    "Hey {first_name} — you were mid-way through your JOSH profile. No pressure, "
    "but whenever you want to pick back up, just reply anything and we'll continue "
    "from where you left off."
)


def render_dropout_nudge(first_name: str) -> str:
    """Nudge text for a user who stopped answering mid-interview."""
    name = (first_name or "").strip()
    if not name:
        raise ValueError("render_dropout_nudge requires a non-empty first name")
    return INTERVIEW_DROPOUT_NUDGE_TEMPLATE.format(first_name=name)


def render_resume_message(step_prompt: str) -> str:
    return f"{INTERVIEW_DROPOUT_RESUME}\n\n{step_prompt}"
