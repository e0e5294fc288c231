"""Owner-facing link management: create, list, update, toggle, delete, analytics."""

import logging
from typing import Any, Callable, List, Mapping, Optional

from sharegate.config import get_settings
from sharegate.shares.errors import (
    DuplicateTokenError,
    LinkPermissionError,
    NotFoundError,
    StorageError,
)
from sharegate.shares.models import LinkAnalytics, LinkCreate, LinkDraft, ShareableLink
from sharegate.shares.passwords import hash_password
from sharegate.shares.repository import LinkRepository
from sharegate.shares.tokens import mint_token

log = logging.getLogger(__name__)


class LinkAdminService:
    def __init__(
        self,
        repo: LinkRepository,
        minter: Callable[[], str] = mint_token,
        mint_attempts: Optional[int] = None,
    ) -> None:
        self._repo = repo
        self._mint = minter
        self._mint_attempts = mint_attempts or get_settings().token_mint_attempts

    async def _owned(self, owner_id: str, link_id: int) -> ShareableLink:
        """Load link_id for owner_id. Missing -> NotFoundError, someone else's -> LinkPermissionError."""
        link = await self._repo.get_by_id(link_id)
        if link is None:
            raise NotFoundError(f"Link {link_id} not found")
        if link.owner_id != owner_id:
            log.warning("Owner %s attempted access to link_id=%s of another owner", owner_id, link_id)
            raise LinkPermissionError(link_id, owner_id)
        return link

    async def create_link(self, owner_id: str, payload: LinkCreate) -> ShareableLink:
        """
        Create a link with a fresh token. A token collision re-mints; after
        mint_attempts collisions the create fails with StorageError.
        """
        draft = LinkDraft(
            title=payload.title,
            content=payload.content,
            content_type=payload.content_type,
            description=payload.description,
            expires_at=payload.expires_at,
            max_views=payload.max_views,
            password_hash=hash_password(payload.password) if payload.password else None,
        )
        for attempt in range(1, self._mint_attempts + 1):
            try:
                link = await self._repo.create(owner_id, self._mint(), draft)
            except DuplicateTokenError:
                log.warning("Token collision on create (attempt %d/%d)", attempt, self._mint_attempts)
                continue
            log.info("Owner %s created link_id=%s", owner_id, link.id)
            return link
        raise StorageError(f"Could not mint a unique token after {self._mint_attempts} attempts")

    async def list_links(self, owner_id: str) -> List[ShareableLink]:
        links = await self._repo.list_by_owner(owner_id)
        log.debug("Owner %s listed links count=%d", owner_id, len(links))
        return links

    async def update_link(
        self, owner_id: str, link_id: int, changes: Mapping[str, Any]
    ) -> ShareableLink:
        await self._owned(owner_id, link_id)
        link = await self._repo.update_by_owner(owner_id, link_id, changes)
        log.info("Owner %s updated link_id=%s fields=%s", owner_id, link_id, sorted(changes))
        return link

    async def toggle_link(self, owner_id: str, link_id: int) -> ShareableLink:
        await self._owned(owner_id, link_id)
        link = await self._repo.toggle_active(owner_id, link_id)
        log.info("Owner %s set link_id=%s active=%s", owner_id, link_id, link.is_active)
        return link

    async def delete_link(self, owner_id: str, link_id: int) -> None:
        await self._owned(owner_id, link_id)
        await self._repo.delete_by_owner(owner_id, link_id)
        log.info("Owner %s deleted link_id=%s", owner_id, link_id)

    async def get_analytics(self, owner_id: str, link_id: int) -> LinkAnalytics:
        link = await self._owned(owner_id, link_id)
        records = await self._repo.list_access_records(link_id)
        count = await self._repo.count_access_records(link_id)
        return LinkAnalytics(link=link, records=records, record_count=count)
