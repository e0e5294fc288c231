"""View counter: one atomic conditional increment per granted read."""

import logging

from sharegate.shares.repository import LinkRepository

log = logging.getLogger(__name__)


class ViewCounter:
    def __init__(self, repo: LinkRepository) -> None:
        self._repo = repo

    async def try_increment(self, link_id: int) -> bool:
        """
        Count one view for link_id unless max_views is already reached.
        Guard and increment are a single statement, so concurrent readers
        cannot push current_views past max_views.
        """
        counted = await self._repo.try_increment(link_id)
        if not counted:
            log.info("View not counted for link_id=%s: quota reached", link_id)
        return counted
