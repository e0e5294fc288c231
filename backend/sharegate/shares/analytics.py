"""Best-effort access analytics. Recording never blocks or fails a granted read."""

import asyncio
import hashlib
import hmac
import logging
from typing import Optional, Set

from sharegate.config import Settings, get_settings
from sharegate.shares.models import AccessRecord
from sharegate.shares.repository import LinkRepository

log = logging.getLogger(__name__)

# Referrer and User-Agent are client-controlled; cap what we store
_MAX_HEADER_CHARS = 1024


def hash_viewer_identity(address: Optional[str]) -> Optional[str]:
    """HMAC-SHA256 hex of the client address. The raw address is never stored."""
    if not address:
        return None
    settings = get_settings()
    key = (settings.viewer_hash_key or settings.jwt_secret).encode("utf-8")
    return hmac.new(key, address.encode("utf-8"), hashlib.sha256).hexdigest()


def check_viewer_hash_key(settings: Optional[Settings] = None) -> bool:
    """Warn and return False when viewer identities would be keyed with an empty secret."""
    settings = settings or get_settings()
    if settings.viewer_hash_key or settings.jwt_secret:
        return True
    log.warning(
        "Neither SHAREGATE_VIEWER_HASH_KEY nor SHAREGATE_JWT_SECRET is set; "
        "viewer identity hashes use an empty key"
    )
    return False


def _clip(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value[:_MAX_HEADER_CHARS]


class AnalyticsRecorder:
    """Writes AccessRecords in background tasks with a timeout; failures are logged only."""

    def __init__(self, repo: LinkRepository, timeout: Optional[float] = None) -> None:
        self._repo = repo
        self._timeout = get_settings().analytics_timeout_seconds if timeout is None else timeout
        self._pending: Set[asyncio.Task] = set()

    def record(
        self,
        link_id: int,
        viewer_identity_hash: Optional[str],
        referrer: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        """Schedule an access record and return immediately."""
        entry = AccessRecord(
            link_id=link_id,
            viewer_identity_hash=viewer_identity_hash,
            referrer=_clip(referrer),
            user_agent=_clip(user_agent),
        )
        try:
            task = asyncio.get_running_loop().create_task(self._write(entry))
        except RuntimeError:
            log.warning("No running event loop; access to link_id=%s not recorded", link_id)
            return
        # Keep a reference until done so the task is not garbage collected
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, entry: AccessRecord) -> None:
        try:
            await asyncio.wait_for(self._repo.add_access_record(entry), self._timeout)
        except asyncio.TimeoutError:
            log.warning(
                "Access record for link_id=%s dropped after %.1fs", entry.link_id, self._timeout
            )
        except Exception as e:
            log.warning("Access record for link_id=%s failed: %s", entry.link_id, e)

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for outstanding writes (shutdown, tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
