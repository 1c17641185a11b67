"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Ownership flows User -> Backlog -> (Epic, PBI). Deleting a backlog
removes its epics and PBIs through ON DELETE CASCADE; deleting an epic
keeps its PBIs and clears their `epic_id` through ON DELETE SET NULL.
"""

import enum
from typing import Optional
from sqlmodel import SQLModel, Field
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Priority(str, enum.Enum):
    """PBI priority levels."""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class User(SQLModel, table=True):
    """A registered user.

    Fields:
    - `username`: unique login name
    - `password_hash`: hashed password string (never store plaintext)
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Backlog(SQLModel, table=True):
    """A product backlog list owned by a single user.

    `user_id` is set once on creation and never reassigned.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    description: Optional[str] = None
    user_id: int = Field(foreign_key="user.id", ondelete="CASCADE", index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Epic(SQLModel, table=True):
    """A grouping of related PBIs inside one backlog."""
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    description: Optional[str] = None
    backlog_id: int = Field(foreign_key="backlog.id", ondelete="CASCADE", index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Pbi(SQLModel, table=True):
    """A product backlog item.

    `epic_id`, when set, must reference an epic of the same backlog; the
    services enforce that on every write.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    pic: str
    title: str
    priority: Priority
    story_point: int
    business_value: str
    user_story: str
    acceptance_criteria: str
    notes: Optional[str] = None
    epic_id: Optional[int] = Field(default=None, foreign_key="epic.id", ondelete="SET NULL", index=True)
    backlog_id: int = Field(foreign_key="backlog.id", ondelete="CASCADE", index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
