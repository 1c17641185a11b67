"""Pydantic request schemas and JSON output shapes used by the API.

Request models accept camelCase keys (`productBacklogListId`,
`storyPoint`, ...) and keep every field optional at the type level:
required-field checks live in the services so that a missing field and
a blank field produce the same descriptive 400 response.
"""

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel
from typing import Optional, Union
from . import models


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RegisterIn(BaseModel):
    """Payload for user registration/login endpoints."""
    username: str
    password: str


class BacklogIn(CamelModel):
    """Create/update payload for a backlog. Any owner field is ignored."""
    title: Optional[str] = None
    description: Optional[str] = None


class EpicIn(CamelModel):
    """Create/update payload for an epic.

    `product_backlog_list_id` is only read on create; an epic never moves
    to another backlog.
    """
    title: Optional[str] = None
    description: Optional[str] = None
    product_backlog_list_id: Optional[int] = None


class PbiIn(CamelModel):
    """Create/update payload for a PBI.

    `story_point` may arrive as a number or as form text; the service
    parses it. `product_backlog_list_id` is only read on create.
    """
    pic: Optional[str] = None
    title: Optional[str] = None
    priority: Optional[str] = None
    story_point: Optional[Union[int, str]] = None
    business_value: Optional[str] = None
    user_story: Optional[str] = None
    acceptance_criteria: Optional[str] = None
    notes: Optional[str] = None
    epic_id: Optional[int] = None
    product_backlog_list_id: Optional[int] = None

    @field_validator("epic_id", "product_backlog_list_id", mode="before")
    @classmethod
    def blank_id_is_none(cls, v):
        # select inputs post "" for "no epic"
        return None if v == "" else v


def backlog_out(b: models.Backlog) -> dict:
    return {
        'id': b.id,
        'title': b.title,
        'description': b.description,
        'userId': b.user_id,
        'createdAt': b.created_at,
        'updatedAt': b.updated_at,
    }


def epic_out(e: models.Epic, backlog_title: Optional[str] = None) -> dict:
    out = {
        'id': e.id,
        'title': e.title,
        'description': e.description,
        'productBacklogListId': e.backlog_id,
        'createdAt': e.created_at,
        'updatedAt': e.updated_at,
    }
    if backlog_title is not None:
        out['backlogTitle'] = backlog_title
    return out


def pbi_out(p: models.Pbi, backlog_title: Optional[str] = None, epic_title: Optional[str] = None) -> dict:
    out = {
        'id': p.id,
        'pic': p.pic,
        'title': p.title,
        'priority': p.priority.value if isinstance(p.priority, models.Priority) else p.priority,
        'storyPoint': p.story_point,
        'businessValue': p.business_value,
        'userStory': p.user_story,
        'acceptanceCriteria': p.acceptance_criteria,
        'notes': p.notes,
        'epicId': p.epic_id,
        'productBacklogListId': p.backlog_id,
        'createdAt': p.created_at,
        'updatedAt': p.updated_at,
    }
    if backlog_title is not None:
        out['backlogTitle'] = backlog_title
        out['epicTitle'] = epic_title
    return out
