"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
backlogs, epics, PBIs). Repositories return SQLModel objects and perform
commits/refreshes where appropriate. Ownership scoping is expressed in
the queries themselves: every list/count joins back to `Backlog.user_id`.
"""

from typing import List, Optional, Tuple
from sqlmodel import Session, select
from sqlalchemy import func
from . import models


class _BaseRepository:
    def __init__(self, session: Session):
        self.session = session

    def save(self, obj):
        """Insert or update `obj` and return the refreshed instance."""
        self.session.add(obj)
        self.session.commit()
        self.session.refresh(obj)
        return obj

    def delete(self, obj) -> None:
        """Delete `obj`; dependent rows are handled by the database."""
        self.session.delete(obj)
        self.session.commit()


class UserRepository(_BaseRepository):
    """CRUD operations for `User` objects."""

    def create(self, user: models.User) -> models.User:
        """Persist a new user and return the managed instance."""
        return self.save(user)

    def get_by_username(self, username: str) -> Optional[models.User]:
        """Return a `User` by username or `None` if not found."""
        stmt = select(models.User).where(models.User.username == username)
        return self.session.exec(stmt).first()

    def get(self, user_id: int) -> Optional[models.User]:
        """Get a `User` by primary key."""
        return self.session.get(models.User, user_id)


class BacklogRepository(_BaseRepository):
    """Queries for backlogs, always scoped to an owner."""

    def get(self, backlog_id: int) -> Optional[models.Backlog]:
        return self.session.get(models.Backlog, backlog_id)

    def get_for_user(self, backlog_id: int, user_id: int) -> Optional[models.Backlog]:
        """Return the backlog only if `user_id` owns it."""
        stmt = select(models.Backlog).where(
            models.Backlog.id == backlog_id,
            models.Backlog.user_id == user_id,
        )
        return self.session.exec(stmt).first()

    def list_for_user(self, user_id: int) -> List[models.Backlog]:
        stmt = (
            select(models.Backlog)
            .where(models.Backlog.user_id == user_id)
            .order_by(models.Backlog.updated_at, models.Backlog.id)
        )
        return self.session.exec(stmt).all()

    def count_for_user(self, user_id: int) -> int:
        stmt = select(func.count(models.Backlog.id)).where(models.Backlog.user_id == user_id)
        return self.session.exec(stmt).one()


class EpicRepository(_BaseRepository):
    """Queries for epics; ownership is resolved through the parent backlog."""

    def get(self, epic_id: int) -> Optional[models.Epic]:
        return self.session.get(models.Epic, epic_id)

    def get_in_backlog(self, epic_id: int, backlog_id: int) -> Optional[models.Epic]:
        """Return the epic only if it belongs to `backlog_id`."""
        stmt = select(models.Epic).where(
            models.Epic.id == epic_id,
            models.Epic.backlog_id == backlog_id,
        )
        return self.session.exec(stmt).first()

    def get_for_user(self, epic_id: int, user_id: int) -> Optional[Tuple[models.Epic, str]]:
        """Return `(epic, backlog_title)` if the epic's backlog is owned by `user_id`."""
        stmt = (
            select(models.Epic, models.Backlog.title)
            .join(models.Backlog, models.Epic.backlog_id == models.Backlog.id)
            .where(models.Epic.id == epic_id, models.Backlog.user_id == user_id)
        )
        return self.session.exec(stmt).first()

    def list_for_user(self, user_id: int, backlog_id: Optional[int] = None) -> List[Tuple[models.Epic, str]]:
        """List `(epic, backlog_title)` rows for every backlog owned by `user_id`."""
        stmt = (
            select(models.Epic, models.Backlog.title)
            .join(models.Backlog, models.Epic.backlog_id == models.Backlog.id)
            .where(models.Backlog.user_id == user_id)
        )
        if backlog_id is not None:
            stmt = stmt.where(models.Epic.backlog_id == backlog_id)
        stmt = stmt.order_by(models.Epic.updated_at, models.Epic.id)
        return self.session.exec(stmt).all()

    def count_for_user(self, user_id: int) -> int:
        stmt = (
            select(func.count(models.Epic.id))
            .join(models.Backlog, models.Epic.backlog_id == models.Backlog.id)
            .where(models.Backlog.user_id == user_id)
        )
        return self.session.exec(stmt).one()


class PbiRepository(_BaseRepository):
    """Queries for PBIs, decorated with their backlog and epic titles."""

    def _titled(self):
        return (
            select(models.Pbi, models.Backlog.title, models.Epic.title)
            .join(models.Backlog, models.Pbi.backlog_id == models.Backlog.id)
            .join(models.Epic, models.Pbi.epic_id == models.Epic.id, isouter=True)
        )

    def get(self, pbi_id: int) -> Optional[models.Pbi]:
        return self.session.get(models.Pbi, pbi_id)

    def get_for_user(self, pbi_id: int, user_id: int) -> Optional[Tuple[models.Pbi, str, Optional[str]]]:
        """Return `(pbi, backlog_title, epic_title)` if `user_id` owns the PBI's backlog."""
        stmt = self._titled().where(models.Pbi.id == pbi_id, models.Backlog.user_id == user_id)
        return self.session.exec(stmt).first()

    def list_for_user(
        self,
        user_id: int,
        backlog_id: Optional[int] = None,
        epic_id: Optional[int] = None,
        without_epic: bool = False,
    ) -> List[Tuple[models.Pbi, str, Optional[str]]]:
        """List PBIs across the user's backlogs.

        `without_epic` selects only PBIs that have no epic and takes
        precedence over `epic_id`.
        """
        stmt = self._titled().where(models.Backlog.user_id == user_id)
        if backlog_id is not None:
            stmt = stmt.where(models.Pbi.backlog_id == backlog_id)
        if without_epic:
            stmt = stmt.where(models.Pbi.epic_id.is_(None))
        elif epic_id is not None:
            stmt = stmt.where(models.Pbi.epic_id == epic_id)
        stmt = stmt.order_by(models.Pbi.updated_at, models.Pbi.id)
        return self.session.exec(stmt).all()

    def count_for_user(self, user_id: int) -> int:
        stmt = (
            select(func.count(models.Pbi.id))
            .join(models.Backlog, models.Pbi.backlog_id == models.Backlog.id)
            .where(models.Backlog.user_id == user_id)
        )
        return self.session.exec(stmt).one()
