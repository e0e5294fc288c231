"""Link persistence: repository protocol, SQLAlchemy implementation, in-memory implementation.

Counter and toggle mutations are single conditional UPDATE statements so that
concurrent requests can never read a stale value and write it back.
"""

import logging
import threading
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import Any, AsyncGenerator, Callable, Dict, List, Mapping, Optional, Protocol

from sqlalchemy import delete, func, not_, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from sharegate.db.session import get_session
from sharegate.shares.db_models import LinkAnalyticsRow, ShareableLinkRow
from sharegate.shares.errors import (
    DuplicateTokenError,
    NotFoundError,
    ShareError,
    StorageError,
    ValidationError,
)
from sharegate.shares.models import AccessRecord, LinkDraft, ShareableLink, as_utc, utcnow

log = logging.getLogger(__name__)

REQUIRED_FIELDS = ("title", "content", "content_type")
UPDATABLE_FIELDS = frozenset({"title", "description", "expires_at", "max_views", "is_active"})


class LinkRepository(Protocol):
    """Abstract link storage.

    Implementations: SqlLinkRepository (production), InMemoryLinkRepository (testing).
    """

    async def create(self, owner_id: str, token: str, draft: LinkDraft) -> ShareableLink: ...

    async def list_by_owner(self, owner_id: str) -> List[ShareableLink]: ...

    async def get_by_token(self, token: str) -> Optional[ShareableLink]: ...

    async def get_by_id(self, link_id: int) -> Optional[ShareableLink]: ...

    async def update_by_owner(
        self, owner_id: str, link_id: int, changes: Mapping[str, Any]
    ) -> ShareableLink: ...

    async def delete_by_owner(self, owner_id: str, link_id: int) -> None: ...

    async def toggle_active(self, owner_id: str, link_id: int) -> ShareableLink: ...

    async def try_increment(self, link_id: int) -> bool:
        """Add one view unless the quota is used up. True if the view was counted."""
        ...

    async def add_access_record(self, record: AccessRecord) -> None: ...

    async def list_access_records(self, link_id: int) -> List[AccessRecord]: ...

    async def count_access_records(self, link_id: int) -> int: ...


def validate_draft(draft: LinkDraft) -> None:
    """Raise ValidationError if required fields are missing or max_views is negative."""
    missing = [name for name in REQUIRED_FIELDS if not (getattr(draft, name) or "").strip()]
    if missing:
        raise ValidationError("Title, content, and content_type are required", fields=missing)
    if draft.max_views is not None and draft.max_views < 0:
        raise ValidationError("max_views must not be negative", fields=["max_views"])


def validate_changes(changes: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a cleaned copy of an update mapping or raise ValidationError."""
    unknown = sorted(set(changes) - UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError("Fields cannot be updated: " + ", ".join(unknown), fields=unknown)
    out = dict(changes)
    if "title" in out and not (out["title"] or "").strip():
        raise ValidationError("Title must not be empty", fields=["title"])
    if "is_active" in out and out["is_active"] is None:
        raise ValidationError("is_active must be true or false", fields=["is_active"])
    if out.get("max_views") is not None and out["max_views"] < 0:
        raise ValidationError("max_views must not be negative", fields=["max_views"])
    if "expires_at" in out:
        out["expires_at"] = as_utc(out["expires_at"])
    return out


def _below_views_error() -> ValidationError:
    return ValidationError("max_views cannot be lower than current views", fields=["max_views"])


def _to_link(row: ShareableLinkRow) -> ShareableLink:
    return ShareableLink(
        id=row.id,
        owner_id=row.owner_id,
        token=row.token,
        title=row.title,
        description=row.description,
        content=row.content,
        content_type=row.content_type,
        expires_at=as_utc(row.expires_at),
        max_views=row.max_views,
        current_views=row.current_views,
        password_hash=row.password_hash,
        is_active=bool(row.is_active),
        created_at=as_utc(row.created_at),
    )


def _to_record(row: LinkAnalyticsRow) -> AccessRecord:
    return AccessRecord(
        id=row.id,
        link_id=row.link_id,
        viewer_identity_hash=row.viewer_identity_hash,
        referrer=row.referrer,
        user_agent=row.user_agent,
        viewed_at=as_utc(row.viewed_at),
    )


class SqlLinkRepository:
    """Links in SQL via SQLAlchemy async. Each call runs in its own short transaction."""

    def __init__(self, session_factory: Callable = get_session) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, action: str) -> AsyncGenerator[AsyncSession, None]:
        """Yield a session; database failures become StorageError."""
        try:
            async with self._session_factory() as session:
                yield session
        except ShareError:
            raise
        except SQLAlchemyError as e:
            raise StorageError(f"{action} failed") from e

    @staticmethod
    async def _owned_row(
        session: AsyncSession, owner_id: str, link_id: int
    ) -> Optional[ShareableLinkRow]:
        result = await session.execute(
            select(ShareableLinkRow).where(
                ShareableLinkRow.id == link_id,
                ShareableLinkRow.owner_id == owner_id,
            )
        )
        return result.scalar_one_or_none()

    async def create(self, owner_id: str, token: str, draft: LinkDraft) -> ShareableLink:
        validate_draft(draft)
        row = ShareableLinkRow(
            owner_id=owner_id,
            token=token,
            title=draft.title,
            description=draft.description,
            content=draft.content,
            content_type=draft.content_type,
            expires_at=as_utc(draft.expires_at),
            max_views=draft.max_views,
            current_views=0,
            password_hash=draft.password_hash,
            is_active=True,
            created_at=utcnow(),
        )
        async with self._session("create link") as session:
            session.add(row)
            try:
                await session.flush()
            except IntegrityError as e:
                raise DuplicateTokenError("Link token already exists") from e
        return _to_link(row)

    async def list_by_owner(self, owner_id: str) -> List[ShareableLink]:
        async with self._session("list links") as session:
            result = await session.execute(
                select(ShareableLinkRow)
                .where(ShareableLinkRow.owner_id == owner_id)
                .order_by(ShareableLinkRow.created_at.desc(), ShareableLinkRow.id.desc())
            )
            return [_to_link(r) for r in result.scalars().all()]

    async def get_by_token(self, token: str) -> Optional[ShareableLink]:
        async with self._session("look up link") as session:
            result = await session.execute(
                select(ShareableLinkRow).where(ShareableLinkRow.token == token)
            )
            row = result.scalar_one_or_none()
            return _to_link(row) if row else None

    async def get_by_id(self, link_id: int) -> Optional[ShareableLink]:
        async with self._session("load link") as session:
            row = await session.get(ShareableLinkRow, link_id)
            return _to_link(row) if row else None

    async def update_by_owner(
        self, owner_id: str, link_id: int, changes: Mapping[str, Any]
    ) -> ShareableLink:
        values = validate_changes(changes)
        async with self._session("update link") as session:
            if values:
                stmt = update(ShareableLinkRow).where(
                    ShareableLinkRow.id == link_id,
                    ShareableLinkRow.owner_id == owner_id,
                )
                if values.get("max_views") is not None:
                    # Never commit a quota below the views already served
                    stmt = stmt.where(ShareableLinkRow.current_views <= values["max_views"])
                result = await session.execute(
                    stmt.values(**values).execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    if await self._owned_row(session, owner_id, link_id) is None:
                        raise NotFoundError(f"Link {link_id} not found")
                    raise _below_views_error()
            row = await self._owned_row(session, owner_id, link_id)
            if row is None:
                raise NotFoundError(f"Link {link_id} not found")
            return _to_link(row)

    async def delete_by_owner(self, owner_id: str, link_id: int) -> None:
        async with self._session("delete link") as session:
            # link_analytics rows go with it (ON DELETE CASCADE)
            result = await session.execute(
                delete(ShareableLinkRow)
                .where(ShareableLinkRow.id == link_id, ShareableLinkRow.owner_id == owner_id)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise NotFoundError(f"Link {link_id} not found")

    async def toggle_active(self, owner_id: str, link_id: int) -> ShareableLink:
        async with self._session("toggle link") as session:
            result = await session.execute(
                update(ShareableLinkRow)
                .where(ShareableLinkRow.id == link_id, ShareableLinkRow.owner_id == owner_id)
                .values(is_active=not_(ShareableLinkRow.is_active))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise NotFoundError(f"Link {link_id} not found")
            row = await self._owned_row(session, owner_id, link_id)
            return _to_link(row)

    async def try_increment(self, link_id: int) -> bool:
        async with self._session("count view") as session:
            result = await session.execute(
                update(ShareableLinkRow)
                .where(
                    ShareableLinkRow.id == link_id,
                    or_(
                        ShareableLinkRow.max_views.is_(None),
                        ShareableLinkRow.current_views < ShareableLinkRow.max_views,
                    ),
                )
                .values(current_views=ShareableLinkRow.current_views + 1)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def add_access_record(self, record: AccessRecord) -> None:
        async with self._session("record access") as session:
            session.add(
                LinkAnalyticsRow(
                    link_id=record.link_id,
                    viewer_identity_hash=record.viewer_identity_hash,
                    referrer=record.referrer,
                    user_agent=record.user_agent,
                    viewed_at=record.viewed_at,
                )
            )

    async def list_access_records(self, link_id: int) -> List[AccessRecord]:
        async with self._session("list analytics") as session:
            result = await session.execute(
                select(LinkAnalyticsRow)
                .where(LinkAnalyticsRow.link_id == link_id)
                .order_by(LinkAnalyticsRow.viewed_at.desc(), LinkAnalyticsRow.id.desc())
            )
            return [_to_record(r) for r in result.scalars().all()]

    async def count_access_records(self, link_id: int) -> int:
        async with self._session("count analytics") as session:
            result = await session.execute(
                select(func.count())
                .select_from(LinkAnalyticsRow)
                .where(LinkAnalyticsRow.link_id == link_id)
            )
            return int(result.scalar_one())


class InMemoryLinkRepository:
    """In-memory link store for tests and local runs. A lock serialises every mutation."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._links: Dict[int, ShareableLink] = {}
        self._records: List[AccessRecord] = []
        self._next_id = 1
        self._next_record_id = 1

    def _owned(self, owner_id: str, link_id: int) -> ShareableLink:
        link = self._links.get(link_id)
        if link is None or link.owner_id != owner_id:
            raise NotFoundError(f"Link {link_id} not found")
        return link

    async def create(self, owner_id: str, token: str, draft: LinkDraft) -> ShareableLink:
        validate_draft(draft)
        with self._lock:
            if any(link.token == token for link in self._links.values()):
                raise DuplicateTokenError("Link token already exists")
            link = ShareableLink(
                id=self._next_id,
                owner_id=owner_id,
                token=token,
                title=draft.title,
                description=draft.description,
                content=draft.content,
                content_type=draft.content_type,
                expires_at=as_utc(draft.expires_at),
                max_views=draft.max_views,
                current_views=0,
                password_hash=draft.password_hash,
                is_active=True,
                created_at=utcnow(),
            )
            self._links[link.id] = link
            self._next_id += 1
            return link

    async def list_by_owner(self, owner_id: str) -> List[ShareableLink]:
        links = [link for link in self._links.values() if link.owner_id == owner_id]
        return sorted(links, key=lambda l: (l.created_at, l.id), reverse=True)

    async def get_by_token(self, token: str) -> Optional[ShareableLink]:
        for link in self._links.values():
            if link.token == token:
                return link
        return None

    async def get_by_id(self, link_id: int) -> Optional[ShareableLink]:
        return self._links.get(link_id)

    async def update_by_owner(
        self, owner_id: str, link_id: int, changes: Mapping[str, Any]
    ) -> ShareableLink:
        values = validate_changes(changes)
        with self._lock:
            link = self._owned(owner_id, link_id)
            if values.get("max_views") is not None and link.current_views > values["max_views"]:
                raise _below_views_error()
            link = replace(link, **values)
            self._links[link_id] = link
            return link

    async def delete_by_owner(self, owner_id: str, link_id: int) -> None:
        with self._lock:
            self._owned(owner_id, link_id)
            del self._links[link_id]
            self._records = [r for r in self._records if r.link_id != link_id]

    async def toggle_active(self, owner_id: str, link_id: int) -> ShareableLink:
        with self._lock:
            link = self._owned(owner_id, link_id)
            link = replace(link, is_active=not link.is_active)
            self._links[link_id] = link
            return link

    async def try_increment(self, link_id: int) -> bool:
        with self._lock:
            link = self._links.get(link_id)
            if link is None or link.quota_reached:
                return False
            self._links[link_id] = replace(link, current_views=link.current_views + 1)
            return True

    async def add_access_record(self, record: AccessRecord) -> None:
        with self._lock:
            if record.link_id not in self._links:
                raise StorageError(f"Link {record.link_id} no longer exists")
            self._records.append(replace(record, id=self._next_record_id))
            self._next_record_id += 1

    async def list_access_records(self, link_id: int) -> List[AccessRecord]:
        records = [r for r in self._records if r.link_id == link_id]
        return sorted(records, key=lambda r: (r.viewed_at, r.id), reverse=True)

    async def count_access_records(self, link_id: int) -> int:
        return sum(1 for r in self._records if r.link_id == link_id)
