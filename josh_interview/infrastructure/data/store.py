"""
Conversation storage for the interview engine.
Holds each user's profile, session, SMS transcript and profile event log.
"""
import os
import json
import logging
import threading
from urllib.parse import quote
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from ...interview.models import ProfileSnapshot, SessionSnapshot

logger = logging.getLogger("store")


@dataclass
class MessageRecord:
    """One SMS in either direction."""
    direction: str  # "inbound" or "outbound"
    text: str
    timestamp: str
    message_sid: Optional[str] = None


@dataclass
class ProfileEventRecord:
    """Append-only record of a profile mutation announced by the planner."""
    event_type: str
    step_id: Optional[str]
    payload: Dict[str, Any]
    created_at: str
    inbound_message_sid: Optional[str] = None


@dataclass
class UserConversation:
    """Everything stored for one user."""
    user_id: str
    profile: ProfileSnapshot
    session: SessionSnapshot = field(default_factory=SessionSnapshot)
    first_name: Optional[str] = None
    messages: List[MessageRecord] = field(default_factory=list)
    events: List[ProfileEventRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "first_name": self.first_name,
            "profile": self.profile.to_dict(),
            "session": self.session.to_dict(),
            "messages": [asdict(m) for m in self.messages],
            "events": [asdict(e) for e in self.events],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserConversation":
        user_id = data["user_id"]
        profile_data = dict(data.get("profile") or {})
        profile_data.setdefault("user_id", user_id)
        return cls(
            user_id=user_id,
            first_name=data.get("first_name"),
            profile=ProfileSnapshot.from_dict(profile_data),
            session=SessionSnapshot.from_dict(data.get("session") or {}),
            messages=[MessageRecord(**m) for m in data.get("messages") or []],
            events=[ProfileEventRecord(**e) for e in data.get("events") or []],
        )


class ConversationStore(ABC):
    """Storage interface used by the interview orchestrator."""

    @abstractmethod
    def load(self, user_id: str) -> UserConversation:
        """Return the user's conversation, creating an empty one if unknown."""

    @abstractmethod
    def save(self, conversation: UserConversation) -> None:
        """Persist the whole conversation."""

    @abstractmethod
    def user_ids(self) -> List[str]:
        """All users with stored conversations."""

    def new_conversation(self, user_id: str, first_name: Optional[str] = None) -> UserConversation:
        return UserConversation(user_id=user_id, profile=ProfileSnapshot(user_id=user_id), first_name=first_name)


class InMemoryConversationStore(ConversationStore):
    """Dict-backed store for tests and one-off runs."""

    def __init__(self):
        self._conversations: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def load(self, user_id: str) -> UserConversation:
        with self._lock:
            data = self._conversations.get(user_id)
        if data is None:
            return self.new_conversation(user_id)
        return UserConversation.from_dict(data)

    def save(self, conversation: UserConversation) -> None:
        # Stored as plain dicts so callers never share mutable state with the store
        with self._lock:
            self._conversations[conversation.user_id] = conversation.to_dict()

    def user_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._conversations)


class JsonFileConversationStore(ConversationStore):
    """
    One JSON document per user under a directory.

    Writes go to a temp file first and are moved into place, so a crash mid-save
    leaves the previous document intact.
    """

    def __init__(self, store_dir: str):
        self.store_dir = store_dir
        os.makedirs(self.store_dir, exist_ok=True)

    def _get_path(self, user_id: str) -> str:
        # Percent-encoded, so distinct ids always map to distinct files
        return os.path.join(self.store_dir, f"{quote(user_id, safe='')}.json")

    def load(self, user_id: str) -> UserConversation:
        path = self._get_path(user_id)
        if not os.path.exists(path):
            return self.new_conversation(user_id)

        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load conversation for {user_id}: {e}")
            raise

        logger.debug(f"Loaded conversation for {user_id}")
        return UserConversation.from_dict(data)

    def save(self, conversation: UserConversation) -> None:
        path = self._get_path(conversation.user_id)
        tmp_path = f"{path}.tmp"
        try:
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(conversation.to_dict(), f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, path)
        except OSError as e:
            logger.error(f"Failed to save conversation for {conversation.user_id}: {e}")
            raise
        logger.debug(f"Saved conversation for {conversation.user_id}")

    def user_ids(self) -> List[str]:
        if not os.path.exists(self.store_dir):
            return []
        ids = []
        for filename in sorted(os.listdir(self.store_dir)):
            if filename.endswith('.json'):
                path = os.path.join(self.store_dir, filename)
                try:
                    with open(path, 'r', encoding='utf-8') as f:
                        ids.append(json.load(f)["user_id"])
                except (OSError, json.JSONDecodeError, KeyError) as e:
                    logger.warning(f"Skipping unreadable conversation file {filename}: {e}")
        return ids
