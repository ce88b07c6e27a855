"""User model - local account record.

Username and email are unique case-insensitively (functional unique indexes
on lower()). password_hash is NULL for accounts that only sign in through an
OAuth provider; email_verified_at is NULL until the address is confirmed.
"""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Index, String, Text, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from nrs_webapp.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from nrs_webapp.models.oauth_link import OAuthLink
    from nrs_webapp.models.one_time_token import UserOneTimeToken

_DEFAULT_UUID = text("gen_random_uuid()")
_CASCADE_ALL_DELETE_ORPHAN = "all, delete-orphan"


class User(Base, TimestampMixin):
    """User account.

    Attributes:
        id: UUID primary key.
        username: Display/login name, 3-20 chars.
        email: Email address, at most 100 chars.
        password_hash: Argon2id hash. NULL for OAuth-only users.
        email_verified_at: Timestamp when email was verified. NULL = unverified.
        created_at: Account creation timestamp (from TimestampMixin).
        updated_at: Last modification timestamp (from TimestampMixin).
    """

    __tablename__ = "app_user"
    __table_args__ = (
        Index("uq_app_user_username_lower", text("lower(username)"), unique=True),
        Index("uq_app_user_email_lower", text("lower(email)"), unique=True),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=_DEFAULT_UUID,
    )
    username: Mapped[str] = mapped_column(String(20), nullable=False)
    email: Mapped[str] = mapped_column(String(100), nullable=False)
    password_hash: Mapped[str | None] = mapped_column(Text(), nullable=True)
    email_verified_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Relationships
    oauth_links: Mapped[list["OAuthLink"]] = relationship(
        "OAuthLink",
        back_populates="user",
        cascade=_CASCADE_ALL_DELETE_ORPHAN,
    )
    one_time_tokens: Mapped[list["UserOneTimeToken"]] = relationship(
        "UserOneTimeToken",
        back_populates="user",
        cascade=_CASCADE_ALL_DELETE_ORPHAN,
    )

    @property
    def is_email_verified(self) -> bool:
        return self.email_verified_at is not None
