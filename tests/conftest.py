"""
Shared fixtures for the interview engine tests.
"""
import pytest

from josh_interview.infrastructure.observability import InMemoryObservabilitySink
from josh_interview.interview.models import InterviewExtractInput, ProfileSnapshot, SessionSnapshot
from josh_interview.interview.testing import FIXED_NOW


@pytest.fixture
def now():
    return FIXED_NOW


@pytest.fixture
def empty_profile():
    return ProfileSnapshot(user_id="user-1")


@pytest.fixture
def idle_session():
    return SessionSnapshot()


@pytest.fixture
def sink():
    return InMemoryObservabilitySink()


@pytest.fixture
def extract_input():
    return InterviewExtractInput(
        user_id="user-1",
        inbound_message_sid="SM0001",
        step_id="motive_01",
        question_target="connection_depth",
        question_text="What do you want that to feel like?",
        user_answer_text="something deep but fun",
    )
