"""SQLAlchemy tables for shareable links and their access analytics."""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from sharegate.db.session import Base


class ShareableLinkRow(Base):
    """Shareable link: token is the public credential, owner_id controls mutation."""

    __tablename__ = "shareable_links"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    token: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    content_type: Mapped[str] = mapped_column(String(255), nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    # None = unlimited
    max_views: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    current_views: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    password_hash: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class LinkAnalyticsRow(Base):
    """One row per granted access. Deleted with its link."""

    __tablename__ = "link_analytics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    link_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("shareable_links.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    viewer_identity_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    referrer: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    viewed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
