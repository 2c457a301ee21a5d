from __future__ import annotations

from pydantic import BaseModel, Field

from messenger_cli.schemas.messages import Message


class Friend(BaseModel):
    user_id: str
    full_name: str


class ThreadSummary(BaseModel):
    thread_id: str = Field(min_length=1)
    participants: list[str] = Field(default_factory=list)
    name: str | None = None
    snippet: str = ""
    timestamp: int = 0


class Thread(BaseModel):
    thread_id: str
    participants: set[str] = Field(default_factory=set)
    friends: list[Friend] = Field(default_factory=list)
    name: str | None = None
    is_self: bool = False
    snippet: str = ""
    timestamp: int = 0
    messages: list[Message] | None = None

    @classmethod
    def from_summary(cls, summary: ThreadSummary) -> Thread:
        return cls(
            thread_id=summary.thread_id,
            participants=set(summary.participants),
            name=summary.name or None,
            snippet=summary.snippet,
            timestamp=summary.timestamp,
        )
