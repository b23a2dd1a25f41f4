"""
Covenant — ORM model registry.

Importing every model here ensures that Alembic (and any other tool that
inspects ``Base.metadata``) discovers all tables automatically.
"""

from covenant.models.profile import Profile
from covenant.models.match import Interest, InterestStatus, Match, MatchStatus
from covenant.models.conversation import Conversation, Message, MessageType
from covenant.models.safety import Block, ProfileView, Report

__all__ = [
    "Profile",
    "Match",
    "MatchStatus",
    "Interest",
    "InterestStatus",
    "Conversation",
    "Message",
    "MessageType",
    "Block",
    "Report",
    "ProfileView",
]
