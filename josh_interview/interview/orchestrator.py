"""
Interview orchestrator: the caller side of the transition planner.

Loads a user's conversation, asks the planner what to do with one inbound SMS,
applies the returned patch and session, records the profile event and
announces the outcome on the event bus.
"""
import time
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from .errors import InterviewStateError
from .events import (
    InterviewEventBus, EventLogger, InterviewMetrics, ErrorOccurredEvent, event_for_plan,
)
from .extractor import InterviewSignalExtractor
from .idempotency import ExtractionRequestGuard, extraction_request_key
from .messages import render_dropout_nudge
from .models import ConversationMode, InterviewTransitionPlan
from .planner import LlmExtractor, build_interview_transition_plan
from ..infrastructure.data import ConversationStore, MessageRecord, ProfileEventRecord
from ..infrastructure.llm import VertexRestClient
from ..infrastructure.observability import LoggingObservabilitySink, ObservabilitySink
from ..config import LLM_RETRY_COUNT, LLM_TIMEOUT_MS, MODEL_NAME, VERTEX_LOCATION

logger = logging.getLogger("orchestrator")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class InterviewOrchestrator:
    """
    SMS interview orchestrator around the pure transition planner.

    Without an explicit extractor one is built on Vertex AI when a project id
    is given; otherwise every turn runs on deterministic parsing alone.
    """

    def __init__(self,
                 store: ConversationStore,
                 llm_extractor: Optional[LlmExtractor] = None,
                 project_id: Optional[str] = None,
                 credentials_json: Optional[str] = None,
                 location: str = VERTEX_LOCATION,
                 model_name: str = MODEL_NAME,
                 llm_timeout_ms: int = LLM_TIMEOUT_MS,
                 llm_retry_count: int = LLM_RETRY_COUNT,
                 enable_llm: bool = True,
                 sink: Optional[ObservabilitySink] = None,
                 clock: Clock = utc_now):
        self.store = store
        self.clock = clock
        self.sink = sink or LoggingObservabilitySink()
        self.request_guard = ExtractionRequestGuard()

        if not enable_llm:
            self.llm_extractor = None
        elif llm_extractor is not None:
            self.llm_extractor = llm_extractor
        elif project_id:
            provider = VertexRestClient(
                project=project_id,
                location=location,
                model=model_name,
                credentials_json=credentials_json,
                timeout_ms=llm_timeout_ms,
            )
            self.llm_extractor = InterviewSignalExtractor(
                provider, sink=self.sink, timeout_ms=llm_timeout_ms, retry_count=llm_retry_count,
            )
        else:
            self.llm_extractor = None
        logger.info(f"Interview orchestrator ready (llm={'on' if self.llm_extractor else 'off'})")

        # Initialize event system
        self.event_bus = InterviewEventBus()
        self.event_logger = EventLogger()
        self.metrics = InterviewMetrics()
        self.event_bus.subscribe(self.event_logger.handle_event)
        self.event_bus.subscribe(self.metrics.handle_event)

    def handle_inbound(self, user_id: str, inbound_message_sid: str, text: str,
                       first_name: Optional[str] = None) -> InterviewTransitionPlan:
        """
        Process one inbound SMS end to end.

        Args:
            user_id: Sender
            inbound_message_sid: Transport message id
            text: Message body
            first_name: Stored with the conversation when not already known

        Returns:
            The plan that was applied

        Raises:
            InterviewStateError: if the stored session can't be handled by the interview engine
        """
        try:
            return self._handle_inbound(user_id, inbound_message_sid, text, first_name)
        finally:
            # Once the turn is saved, a redelivery is caught as a replay by the session
            self.request_guard.release(extraction_request_key(user_id, inbound_message_sid))

    def _handle_inbound(self, user_id: str, inbound_message_sid: str, text: str,
                        first_name: Optional[str]) -> InterviewTransitionPlan:
        now = self.clock()
        now_iso = now.isoformat()
        conversation = self.store.load(user_id)
        if first_name and not conversation.first_name:
            conversation.first_name = first_name

        try:
            plan = build_interview_transition_plan(
                user_id=user_id,
                inbound_message_sid=inbound_message_sid,
                inbound_text=text,
                session=conversation.session,
                profile=conversation.profile,
                now=now,
                llm_extractor=self.llm_extractor,
                llm_request_guard=self.request_guard,
            )
        except InterviewStateError as e:
            logger.error(f"Cannot plan interview turn for {user_id}: {e}")
            self.event_bus.publish(ErrorOccurredEvent(user_id, time.time(), type(e).__name__, str(e), "planner"))
            raise

        is_replay = conversation.session.last_inbound_message_sid == inbound_message_sid
        if not is_replay:
            conversation.messages.append(MessageRecord("inbound", text, now_iso, inbound_message_sid))

        if plan.profile_patch is not None:
            conversation.profile = plan.profile_patch.apply_to(conversation.profile)
        conversation.session = plan.next_session
        if plan.profile_event_type:
            conversation.events.append(ProfileEventRecord(
                event_type=plan.profile_event_type,
                step_id=plan.profile_event_step_id,
                payload=plan.profile_event_payload or {},
                created_at=now_iso,
                inbound_message_sid=inbound_message_sid,
            ))
        conversation.messages.append(MessageRecord("outbound", plan.reply_message, now_iso))
        self.store.save(conversation)

        event_step = plan.next_step_id if plan.action in ("start", "resume") else plan.current_step_id
        event = event_for_plan(user_id, time.time(), plan.action, event_step,
                               plan.profile_event_type, plan.profile_event_payload)
        if event is not None:
            self.event_bus.publish(event)

        logger.info(f"{user_id} [{inbound_message_sid}] -> {plan.action}")
        return plan

    def send_dropout_nudge(self, user_id: str) -> Optional[str]:
        """
        Mark a stalled interview as nudged and return the nudge text.

        Returns None when the user is not mid-interview or was already nudged.
        """
        conversation = self.store.load(user_id)
        session = conversation.session
        if session.mode != ConversationMode.INTERVIEWING.value or session.dropout_nudge_sent_at:
            return None

        message = render_dropout_nudge(conversation.first_name or "there")
        now_iso = self.clock().isoformat()
        session.dropout_nudge_sent_at = now_iso
        conversation.messages.append(MessageRecord("outbound", message, now_iso))
        self.store.save(conversation)
        logger.info(f"Sent dropout nudge to {user_id}")
        return message

    def get_metrics(self) -> Dict[str, int]:
        """Get current interview metrics."""
        return self.metrics.get_metrics()

    def reset_metrics(self):
        """Reset interview metrics."""
        self.metrics.reset()
