"""
bangchat/brain/types.py - Conversation Data Models

Shared types passed between the session orchestrator and language model
backends. Backends render these into their native template text.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class Role(str, Enum):
    SYSTEM = "System"
    USER = "User"
    ASSISTANT = "Assistant"


class Message(BaseModel):
    """
    One (role, message) entry of a conversation.

    content=None marks an open turn: the template ends with the role label
    and the model continues from there.
    """
    role: Role
    content: Optional[str] = Field(default=None)

    @property
    def is_open(self) -> bool:
        return self.content is None

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: Optional[str] = None) -> "Message":
        return cls(role=Role.ASSISTANT, content=content)
