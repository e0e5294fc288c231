"""Share routes: owner link management and the public read by token."""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from sharegate.auth.dependencies import get_current_owner
from sharegate.config import get_settings
from sharegate.limiter import limiter
from sharegate.shares.errors import LinkPermissionError, NotFoundError
from sharegate.shares.gate import AccessGate, Denial, DenialReason, Viewer
from sharegate.shares.models import (
    AccessRecordResponse,
    AnalyticsResponse,
    AnalyticsSummary,
    LinkCreate,
    LinkEnvelope,
    LinkList,
    LinkResponse,
    LinkUpdate,
    SharedContent,
)
from sharegate.shares.service import LinkAdminService

router = APIRouter(prefix="/api/share", tags=["share"])
log = logging.getLogger(__name__)

_LINK_NOT_FOUND = "Link not found"

# Disabled and expired look exactly like missing: a reader cannot tell
# "never existed" from "existed but is gone".
_DENIAL_STATUS = {
    DenialReason.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    DenialReason.DISABLED: status.HTTP_404_NOT_FOUND,
    DenialReason.EXPIRED: status.HTTP_404_NOT_FOUND,
    DenialReason.VIEW_LIMIT_EXCEEDED: status.HTTP_403_FORBIDDEN,
    DenialReason.PASSWORD_REQUIRED: status.HTTP_401_UNAUTHORIZED,
    DenialReason.PASSWORD_INCORRECT: status.HTTP_401_UNAUTHORIZED,
}


def get_admin_service(request: Request) -> LinkAdminService:
    return request.app.state.link_service


def get_access_gate(request: Request) -> AccessGate:
    return request.app.state.access_gate


def _link_not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_LINK_NOT_FOUND)


def _denial_response(denial: Denial) -> JSONResponse:
    code = _DENIAL_STATUS[denial.reason]
    if code == status.HTTP_404_NOT_FOUND:
        content = {"detail": _LINK_NOT_FOUND}
    else:
        content = {"detail": str(denial.error())}
    if denial.reason is DenialReason.PASSWORD_REQUIRED:
        content["requiresPassword"] = True
    return JSONResponse(status_code=code, content=content)


@router.post("", response_model=LinkEnvelope, status_code=status.HTTP_201_CREATED)
async def create_link(
    body: LinkCreate,
    owner_id: Annotated[str, Depends(get_current_owner)],
    service: Annotated[LinkAdminService, Depends(get_admin_service)],
) -> LinkEnvelope:
    """Create a shareable link. Title, content and content_type are required."""
    link = await service.create_link(owner_id, body)
    return LinkEnvelope(link=LinkResponse.model_validate(link))


@router.get("", response_model=LinkList)
async def list_links(
    owner_id: Annotated[str, Depends(get_current_owner)],
    service: Annotated[LinkAdminService, Depends(get_admin_service)],
) -> LinkList:
    """List the caller's links, newest first."""
    links = await service.list_links(owner_id)
    return LinkList(links=[LinkResponse.model_validate(l) for l in links])


@router.get("/{token}", response_model=SharedContent)
@limiter.limit(get_settings().share_read_rate_limit)
async def read_shared(
    request: Request,
    token: str,
    gate: Annotated[AccessGate, Depends(get_access_gate)],
    password: Optional[str] = Query(default=None),
    x_share_password: Annotated[Optional[str], Header()] = None,
):
    """
    Public read by token. Password may come from the X-Share-Password header
    (preferred) or the password query parameter.
    """
    viewer = Viewer(
        address=request.client.host if request.client else None,
        referrer=request.headers.get("referer"),
        user_agent=request.headers.get("user-agent"),
    )
    outcome = await gate.evaluate(token, x_share_password or password, viewer)
    if isinstance(outcome, Denial):
        return _denial_response(outcome)
    return SharedContent(
        content=outcome.content,
        title=outcome.title,
        description=outcome.description,
        content_type=outcome.content_type,
    )


@router.put("/{link_id}", response_model=LinkEnvelope)
async def update_link(
    link_id: int,
    body: LinkUpdate,
    owner_id: Annotated[str, Depends(get_current_owner)],
    service: Annotated[LinkAdminService, Depends(get_admin_service)],
) -> LinkEnvelope:
    """Update metadata, expiry, quota or active flag. Only fields sent are changed."""
    try:
        link = await service.update_link(owner_id, link_id, body.model_dump(exclude_unset=True))
    except (NotFoundError, LinkPermissionError):
        raise _link_not_found()
    return LinkEnvelope(link=LinkResponse.model_validate(link))


@router.delete("/{link_id}")
async def delete_link(
    link_id: int,
    owner_id: Annotated[str, Depends(get_current_owner)],
    service: Annotated[LinkAdminService, Depends(get_admin_service)],
) -> dict:
    """Delete a link and its analytics."""
    try:
        await service.delete_link(owner_id, link_id)
    except (NotFoundError, LinkPermissionError):
        raise _link_not_found()
    return {"detail": "Link deleted successfully"}


@router.post("/{link_id}/toggle", response_model=LinkEnvelope)
async def toggle_link(
    link_id: int,
    owner_id: Annotated[str, Depends(get_current_owner)],
    service: Annotated[LinkAdminService, Depends(get_admin_service)],
) -> LinkEnvelope:
    """Flip is_active."""
    try:
        link = await service.toggle_link(owner_id, link_id)
    except (NotFoundError, LinkPermissionError):
        raise _link_not_found()
    return LinkEnvelope(link=LinkResponse.model_validate(link))


@router.get("/{link_id}/analytics", response_model=AnalyticsResponse)
async def link_analytics(
    link_id: int,
    owner_id: Annotated[str, Depends(get_current_owner)],
    service: Annotated[LinkAdminService, Depends(get_admin_service)],
) -> AnalyticsResponse:
    """Access records for a link (newest first) and a view summary."""
    try:
        result = await service.get_analytics(owner_id, link_id)
    except (NotFoundError, LinkPermissionError):
        raise _link_not_found()
    return AnalyticsResponse(
        link=LinkResponse.model_validate(result.link),
        analytics=[AccessRecordResponse.model_validate(r) for r in result.records],
        summary=AnalyticsSummary(
            total_views=result.total_views,
            record_count=result.record_count,
        ),
    )
