"""
Interview extraction prompt templates.

Prompts live here, apart from the extractor, so they can be edited and versioned
without touching retry or validation logic.
"""
import json
from typing import List

from .models import ConversationTurn, InterviewExtractInput
from ..config import PROMPT_HISTORY_TURNS

INTERVIEW_EXTRACTION_PROMPT_VERSION = "interview_extraction_v1"


class InterviewExtractionPrompts:
    """Prompt builders for the interview signal extractor."""

    @staticmethod
    def system_prompt() -> str:
        return """
You are the JOSH interview signal extractor.
Return JSON only. No markdown, no prose, no code fences.

You must output an object that matches this contract exactly:
{
  "stepId": string,
  "extracted": {
    "fingerprintPatches"?: [{ "key": string, "range_value": number(0..1), "confidence": number(0..1) }],
    "activityPatternsAdd"?: [{
      "activity_key": string,
      "motive_weights": Record<string, number(0..1)>,
      "constraints"?: Record<string, boolean>,
      "preferred_windows"?: string[],
      "confidence": number(0..1)
    }],
    "boundariesPatch"?: { "no_thanks"?: string[], "skipped"?: boolean },
    "preferencesPatch"?: { "group_size_pref"?: "2-3"|"4-6"|"7-10", "time_preferences"?: string[] }
  },
  "notes"?: {
    "needsFollowUp"?: boolean,
    "followUpQuestion"?: string,
    "followUpOptions"?: [{ "key": string, "label": string }]
  }
}

Rules:
- Echo CurrentStepId as stepId.
- Be conservative. Do not guess when confidence is low.
- Leave fields empty instead of inventing data.
- Never emit values outside 0..1 for confidence, range_value or motive weights.
- Use cross-signal inference only when strongly indicated by the answer and recent context.
- Avoid strong single-message swings for any fingerprint factor.
- Set notes.needsFollowUp=true only when motive weights are too flat or mismatch risk is high.
- Do not set needsFollowUp=true for routine ambiguity.
        """.strip()

    @staticmethod
    def format_recent_turns(turns: List[ConversationTurn]) -> str:
        recent = turns[-PROMPT_HISTORY_TURNS:]
        if not recent:
            return "(none)"
        return "\n".join(f"{i}. {turn.role}: {turn.text}" for i, turn in enumerate(recent, start=1))

    @staticmethod
    def user_prompt(extract_input: InterviewExtractInput) -> str:
        profile_json = json.dumps(extract_input.current_profile, ensure_ascii=False, sort_keys=True, default=str)
        return "\n".join([
            f"PromptVersion: {INTERVIEW_EXTRACTION_PROMPT_VERSION}",
            f"UserId: {extract_input.user_id}",
            f"InboundMessageSid: {extract_input.inbound_message_sid}",
            f"CurrentStepId: {extract_input.step_id}",
            f"CurrentQuestionTarget: {extract_input.question_target}",
            f"CurrentQuestionText: {extract_input.question_text}",
            f"UserAnswerText: {extract_input.user_answer_text}",
            "RecentConversationTurns:",
            InterviewExtractionPrompts.format_recent_turns(extract_input.recent_conversation_turns),
            f"CurrentProfileJSON: {profile_json}",
        ])
