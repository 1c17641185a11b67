"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories and
enforce ownership: every backlog, epic and PBI is reachable only through
a backlog owned by the requesting user. Services validate input before
touching the store and raise:

- `ValueError` for missing or malformed fields,
- `NotFoundError` when a record is absent or belongs to someone else,
- `ForbiddenError` when a record exists but its backlog is not the user's
  (only raised on epic/PBI update and delete),
- `ConflictError` when registering a taken username.
"""

from datetime import datetime, timedelta, timezone
from passlib.context import CryptContext
import jwt
import logging
from typing import Optional
from . import models, repositories, schemas
from .config import settings
from .utils import export
from .utils.sorting import NO_EPIC, FilterSpec, SortSpec, arrange
from sqlmodel import Session

# SQLite INTEGER is a signed 64-bit value
MAX_STORY_POINT = 2**63 - 1

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
logger = logging.getLogger("backlog_api.services")


class NotFoundError(Exception):
    """Requested record does not exist or is not visible to the user."""


class ForbiddenError(Exception):
    """Record exists but is owned by another user."""


class ConflictError(Exception):
    """Request conflicts with existing state."""


def _require_text(value: Optional[str], message: str) -> str:
    if value is None or not isinstance(value, str) or not value.strip():
        raise ValueError(message)
    return value


def parse_story_point(value) -> int:
    """Parse a story point from a number or form text.

    Non-integer or negative input is rejected rather than coerced to 0.
    """
    if value is None or isinstance(value, bool):
        raise ValueError("storyPoint is required")
    if isinstance(value, int):
        n = value
    else:
        text = str(value).strip()
        if not text:
            raise ValueError("storyPoint is required")
        try:
            n = int(text)
        except ValueError:
            raise ValueError("storyPoint must be a whole number")
    if n < 0:
        raise ValueError("storyPoint must be zero or greater")
    if n > MAX_STORY_POINT:
        raise ValueError("storyPoint is too large")
    return n


def parse_priority(value: Optional[str]) -> models.Priority:
    if not value:
        raise ValueError("priority is required")
    try:
        return models.Priority(value)
    except ValueError:
        allowed = ", ".join(p.value for p in models.Priority)
        raise ValueError(f"priority must be one of: {allowed}")


class AuthService:
    """Authentication related operations (register + authenticate)."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def register(self, username: str, password: str) -> models.User:
        """Create a new user with a hashed password.

        Registering an existing username with the same password returns
        the existing user; a different password raises `ConflictError`.
        """
        username = _require_text(username, "username is required").strip()
        _require_text(password, "password is required")
        existing = self.user_repo.get_by_username(username)
        if existing:
            if PWD_CTX.verify(password, existing.password_hash):
                return existing
            raise ConflictError("username already taken")
        u = models.User(username=username, password_hash=PWD_CTX.hash(password))
        user = self.user_repo.create(u)
        logger.info("user registered id=%s", user.id)
        return user

    def authenticate(self, username: str, password: str) -> Optional[str]:
        """Verify credentials and return a signed JWT token on success.

        Returns `None` if authentication fails.
        """
        user = self.user_repo.get_by_username((username or "").strip())
        if not user:
            return None
        if not PWD_CTX.verify(password, user.password_hash):
            return None
        expire = datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRE_HOURS)
        payload = {"user_id": user.id, "username": user.username, "exp": int(expire.timestamp())}
        return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


class BacklogService:
    """CRUD for backlogs owned by the current user."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.BacklogRepository(session)

    def get_owned(self, user_id: int, backlog_id: int) -> models.Backlog:
        backlog = self.repo.get_for_user(backlog_id, user_id)
        if not backlog:
            raise NotFoundError("Backlog not found")
        return backlog

    def list_owned(self, user_id: int) -> list:
        return [schemas.backlog_out(b) for b in self.repo.list_for_user(user_id)]

    def get(self, user_id: int, backlog_id: int) -> dict:
        return schemas.backlog_out(self.get_owned(user_id, backlog_id))

    def create(self, user_id: int, payload: schemas.BacklogIn) -> dict:
        title = _require_text(payload.title, "Title is required")
        backlog = self.repo.save(models.Backlog(title=title, description=payload.description, user_id=user_id))
        logger.info("backlog created id=%s user=%s", backlog.id, user_id)
        return schemas.backlog_out(backlog)

    def update(self, user_id: int, backlog_id: int, payload: schemas.BacklogIn) -> dict:
        title = _require_text(payload.title, "Title is required")
        backlog = self.get_owned(user_id, backlog_id)
        backlog.title = title
        backlog.description = payload.description
        backlog.updated_at = models.utcnow()
        backlog = self.repo.save(backlog)
        logger.info("backlog updated id=%s user=%s", backlog.id, user_id)
        return schemas.backlog_out(backlog)

    def delete(self, user_id: int, backlog_id: int) -> None:
        """Delete a backlog; its epics and PBIs go with it."""
        backlog = self.get_owned(user_id, backlog_id)
        self.repo.delete(backlog)
        logger.info("backlog deleted id=%s user=%s", backlog_id, user_id)


class EpicService:
    """CRUD for epics, authorised through the parent backlog."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.EpicRepository(session)
        self.backlog_repo = repositories.BacklogRepository(session)

    def _checked(self, user_id: int, epic_id: int) -> tuple:
        epic = self.repo.get(epic_id)
        if not epic:
            raise NotFoundError("Epic not found")
        backlog = self.backlog_repo.get(epic.backlog_id)
        if not backlog or backlog.user_id != user_id:
            raise ForbiddenError("Unauthorized")
        return epic, backlog

    def list_owned(self, user_id: int, backlog_id: Optional[int] = None) -> list:
        rows = self.repo.list_for_user(user_id, backlog_id=backlog_id)
        return [schemas.epic_out(e, title) for e, title in rows]

    def get(self, user_id: int, epic_id: int) -> dict:
        row = self.repo.get_for_user(epic_id, user_id)
        if not row:
            raise NotFoundError("Epic not found")
        epic, backlog_title = row
        return schemas.epic_out(epic, backlog_title)

    def create(self, user_id: int, payload: schemas.EpicIn) -> dict:
        if not payload.title or not payload.title.strip() or payload.product_backlog_list_id is None:
            raise ValueError("Title and backlog list are required")
        backlog = self.backlog_repo.get_for_user(payload.product_backlog_list_id, user_id)
        if not backlog:
            raise NotFoundError("Backlog not found")
        epic = self.repo.save(models.Epic(title=payload.title, description=payload.description, backlog_id=backlog.id))
        logger.info("epic created id=%s backlog=%s", epic.id, backlog.id)
        return schemas.epic_out(epic, backlog.title)

    def update(self, user_id: int, epic_id: int, payload: schemas.EpicIn) -> dict:
        title = _require_text(payload.title, "Title is required")
        epic, backlog = self._checked(user_id, epic_id)
        epic.title = title
        epic.description = payload.description
        epic.updated_at = models.utcnow()
        epic = self.repo.save(epic)
        logger.info("epic updated id=%s", epic.id)
        return schemas.epic_out(epic, backlog.title)

    def delete(self, user_id: int, epic_id: int) -> None:
        """Delete an epic; its PBIs stay in the backlog with no epic."""
        epic, _ = self._checked(user_id, epic_id)
        self.repo.delete(epic)
        logger.info("epic deleted id=%s", epic_id)


class PbiService:
    """CRUD for PBIs with cross-entity (backlog/epic) validation."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.PbiRepository(session)
        self.backlog_repo = repositories.BacklogRepository(session)
        self.epic_repo = repositories.EpicRepository(session)

    def _validate(self, payload: schemas.PbiIn) -> dict:
        """Check the required narrative fields and return the parsed values."""
        missing = [
            name for name, value in (
                ("pic", payload.pic),
                ("title", payload.title),
                ("priority", payload.priority),
                ("businessValue", payload.business_value),
                ("userStory", payload.user_story),
                ("acceptanceCriteria", payload.acceptance_criteria),
            )
            if value is None or not str(value).strip()
        ]
        if payload.story_point is None or (isinstance(payload.story_point, str) and not payload.story_point.strip()):
            missing.append("storyPoint")
        if missing:
            raise ValueError(f"Required fields are missing: {', '.join(missing)}")
        return {
            'pic': payload.pic,
            'title': payload.title,
            'priority': parse_priority(payload.priority),
            'story_point': parse_story_point(payload.story_point),
            'business_value': payload.business_value,
            'user_story': payload.user_story,
            'acceptance_criteria': payload.acceptance_criteria,
            'notes': payload.notes,
        }

    def _check_epic(self, epic_id: Optional[int], backlog_id: int) -> Optional[models.Epic]:
        if not epic_id:
            return None
        epic = self.epic_repo.get_in_backlog(epic_id, backlog_id)
        if not epic:
            raise NotFoundError("Epic not found in the specified backlog")
        return epic

    def _checked(self, user_id: int, pbi_id: int) -> tuple:
        pbi = self.repo.get(pbi_id)
        if not pbi:
            raise NotFoundError("PBI not found")
        backlog = self.backlog_repo.get(pbi.backlog_id)
        if not backlog or backlog.user_id != user_id:
            raise ForbiddenError("Unauthorized")
        return pbi, backlog

    def list_owned(
        self,
        user_id: int,
        filters: Optional[FilterSpec] = None,
        sort: Optional[SortSpec] = None,
    ) -> list:
        """List the user's PBIs matching `filters`, in `sort` order.

        The filters narrow the query and are matched again against the
        decorated rows.
        """
        filters = filters or FilterSpec()
        without_epic = filters.epic_id == NO_EPIC
        rows = self.repo.list_for_user(
            user_id,
            backlog_id=filters.backlog_id,
            epic_id=None if without_epic else filters.epic_id,
            without_epic=without_epic,
        )
        items = [schemas.pbi_out(p, bt, et) for p, bt, et in rows]
        return arrange(items, sort=sort, filters=filters)

    def get(self, user_id: int, pbi_id: int) -> dict:
        row = self.repo.get_for_user(pbi_id, user_id)
        if not row:
            raise NotFoundError("PBI not found")
        return schemas.pbi_out(*row)

    def create(self, user_id: int, payload: schemas.PbiIn) -> dict:
        fields = self._validate(payload)
        if payload.product_backlog_list_id is None:
            raise ValueError("Required fields are missing: productBacklogListId")
        backlog = self.backlog_repo.get_for_user(payload.product_backlog_list_id, user_id)
        if not backlog:
            raise NotFoundError("Backlog not found")
        epic = self._check_epic(payload.epic_id, backlog.id)
        pbi = models.Pbi(**fields, epic_id=epic.id if epic else None, backlog_id=backlog.id)
        pbi = self.repo.save(pbi)
        logger.info("pbi created id=%s backlog=%s epic=%s", pbi.id, backlog.id, pbi.epic_id)
        return schemas.pbi_out(pbi, backlog.title, epic.title if epic else None)

    def update(self, user_id: int, pbi_id: int, payload: schemas.PbiIn) -> dict:
        """Replace every editable field; the PBI stays in its backlog."""
        fields = self._validate(payload)
        pbi, backlog = self._checked(user_id, pbi_id)
        epic = self._check_epic(payload.epic_id, pbi.backlog_id)
        for name, value in fields.items():
            setattr(pbi, name, value)
        pbi.epic_id = epic.id if epic else None
        pbi.updated_at = models.utcnow()
        pbi = self.repo.save(pbi)
        logger.info("pbi updated id=%s epic=%s", pbi.id, pbi.epic_id)
        return schemas.pbi_out(pbi, backlog.title, epic.title if epic else None)

    def delete(self, user_id: int, pbi_id: int) -> None:
        pbi, _ = self._checked(user_id, pbi_id)
        self.repo.delete(pbi)
        logger.info("pbi deleted id=%s", pbi_id)


class DashboardService:
    """Per-user totals shown on the dashboard."""
    def __init__(self, session: Session):
        self.session = session

    def counts(self, user_id: int) -> dict:
        return {
            'backlogs': repositories.BacklogRepository(self.session).count_for_user(user_id),
            'epics': repositories.EpicRepository(self.session).count_for_user(user_id),
            'pbis': repositories.PbiRepository(self.session).count_for_user(user_id),
        }


class ExportService:
    """Build the spreadsheet download for one backlog."""
    def __init__(self, session: Session):
        self.session = session
        self.pbis = PbiService(session)
        self.backlogs = BacklogService(session)

    def export_backlog(self, user_id: int, backlog_id: int, sort: Optional[SortSpec] = None) -> tuple:
        """Return `(filename, xlsx_bytes)` for the backlog's PBIs in `sort` order."""
        backlog = self.backlogs.get_owned(user_id, backlog_id)
        items = self.pbis.list_owned(user_id, filters=FilterSpec(backlog_id=backlog.id), sort=sort or SortSpec())
        wb = export.build_workbook(items)
        logger.info("backlog exported id=%s rows=%s", backlog.id, len(items))
        return export.export_filename(backlog.title), export.workbook_bytes(wb)
