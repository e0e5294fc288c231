"""Share-link error taxonomy.

Denial errors (disabled, expired, view limit, password) are routine outcomes
of a public read and are never logged as errors. StorageError is the only
unexpected failure: callers log it and return a generic message.
"""

from typing import List, Optional


class ShareError(Exception):
    """Base class for share-link errors."""


class ValidationError(ShareError):
    """Missing or malformed fields supplied by the caller."""

    def __init__(self, message: str, fields: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.fields = fields or []


class NotFoundError(ShareError):
    """No link for the given id or token."""


class LinkPermissionError(ShareError):
    """Link exists but belongs to another owner. Reported as not found externally."""

    def __init__(self, link_id: int, owner_id: str) -> None:
        super().__init__(f"Link {link_id} is not owned by {owner_id}")
        self.link_id = link_id
        self.owner_id = owner_id


class LinkDisabledError(ShareError):
    """Owner switched the link off."""


class ExpiredLinkError(ShareError):
    """Link's expiry time has passed."""


class ViewLimitExceededError(ShareError):
    """Link has used up its view quota."""


class PasswordRequiredError(ShareError):
    """Link is password protected and no password was supplied."""


class PasswordIncorrectError(ShareError):
    """Supplied password does not match."""


class StorageError(ShareError):
    """Backing store failure."""


class DuplicateTokenError(StorageError):
    """Insert collided with an existing token."""
