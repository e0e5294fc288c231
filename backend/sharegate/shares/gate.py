"""Public access decision for shared links.

Checks run in a fixed order and the first failing check decides the outcome:

  1. not found        2. disabled          3. expired
  4. view limit       5. password missing  6. password wrong

Existence and the kill switch come before anything that reveals more about
the link (even "needs a password" says the link is live). Expiry and quota
come before the password so no attempt is spent on a link that cannot be read.

A grant counts exactly one view and schedules one access record. A denial
changes nothing.
"""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Union

from sharegate.shares.analytics import AnalyticsRecorder, hash_viewer_identity
from sharegate.shares.counter import ViewCounter
from sharegate.shares.errors import (
    ExpiredLinkError,
    LinkDisabledError,
    NotFoundError,
    PasswordIncorrectError,
    PasswordRequiredError,
    ShareError,
    ViewLimitExceededError,
)
from sharegate.shares.models import ShareableLink, utcnow
from sharegate.shares.passwords import verify_password
from sharegate.shares.repository import LinkRepository

log = logging.getLogger(__name__)


class DenialReason(enum.Enum):
    NOT_FOUND = "not_found"
    DISABLED = "disabled"
    EXPIRED = "expired"
    VIEW_LIMIT_EXCEEDED = "view_limit_exceeded"
    PASSWORD_REQUIRED = "password_required"
    PASSWORD_INCORRECT = "password_incorrect"


_DENIAL_ERRORS = {
    DenialReason.NOT_FOUND: (NotFoundError, "Link not found"),
    DenialReason.DISABLED: (LinkDisabledError, "This link has been disabled"),
    DenialReason.EXPIRED: (ExpiredLinkError, "This link has expired"),
    DenialReason.VIEW_LIMIT_EXCEEDED: (ViewLimitExceededError, "View limit exceeded"),
    DenialReason.PASSWORD_REQUIRED: (PasswordRequiredError, "Password required"),
    DenialReason.PASSWORD_INCORRECT: (PasswordIncorrectError, "Incorrect password"),
}


@dataclass(frozen=True)
class Viewer:
    """Request metadata used for analytics. address is hashed before storage."""

    address: Optional[str] = None
    referrer: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class Grant:
    """What a reader may see. Owner, password hash and counters stay inside the gate."""

    link_id: int
    content: str
    title: str
    description: Optional[str]
    content_type: str

    @classmethod
    def from_link(cls, link: ShareableLink) -> "Grant":
        return cls(
            link_id=link.id,
            content=link.content,
            title=link.title,
            description=link.description,
            content_type=link.content_type,
        )


@dataclass(frozen=True)
class Denial:
    reason: DenialReason

    def error(self) -> ShareError:
        """The matching exception, for callers that raise instead of branching."""
        cls, message = _DENIAL_ERRORS[self.reason]
        return cls(message)


AccessOutcome = Union[Grant, Denial]


class AccessGate:
    def __init__(
        self,
        repo: LinkRepository,
        counter: ViewCounter,
        recorder: AnalyticsRecorder,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repo = repo
        self._counter = counter
        self._recorder = recorder
        self._clock = clock

    def _check(self, link: Optional[ShareableLink], password: Optional[str]) -> Optional[DenialReason]:
        if link is None:
            return DenialReason.NOT_FOUND
        if not link.is_active:
            return DenialReason.DISABLED
        if link.is_expired(self._clock()):
            return DenialReason.EXPIRED
        if link.quota_reached:
            return DenialReason.VIEW_LIMIT_EXCEEDED
        if link.password_hash is not None:
            if not password:
                return DenialReason.PASSWORD_REQUIRED
            if not verify_password(password, link.password_hash):
                return DenialReason.PASSWORD_INCORRECT
        return None

    async def evaluate(
        self,
        token: str,
        password: Optional[str] = None,
        viewer: Optional[Viewer] = None,
    ) -> AccessOutcome:
        link = await self._repo.get_by_token(token)
        reason = self._check(link, password)
        if reason is None and not await self._counter.try_increment(link.id):
            # Another request took the last view between the check and the increment
            reason = DenialReason.VIEW_LIMIT_EXCEEDED
        if reason is not None:
            log.info(
                "Share access denied: %s link_id=%s",
                reason.value,
                link.id if link else None,
            )
            return Denial(reason)

        viewer = viewer or Viewer()
        self._recorder.record(
            link.id,
            hash_viewer_identity(viewer.address),
            referrer=viewer.referrer,
            user_agent=viewer.user_agent,
        )
        log.debug("Share access granted link_id=%s", link.id)
        return Grant.from_link(link)
