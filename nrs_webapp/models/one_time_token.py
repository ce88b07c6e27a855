"""One-time token model - email verification and password reset.

Only the keyed hash of a token is stored. A partial unique index allows at
most one unused token per (user, purpose); issuing a new one refreshes that
row instead of adding another, which invalidates the previous link.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from nrs_webapp.models.base import Base

if TYPE_CHECKING:
    from nrs_webapp.models.user import User

_DEFAULT_UUID = text("gen_random_uuid()")


class TokenPurpose(str, Enum):
    """What a one-time token authorizes."""

    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"


class UserOneTimeToken(Base):
    """Single-use, time-limited token.

    Attributes:
        id: UUID primary key.
        user_id: FK to app_user.
        token_hash: HMAC-SHA256 of the raw token (standard base64).
        purpose: TokenPurpose value.
        expires_at: Token is rejected at or after this time.
        created_at: Issue time; reset when the token is refreshed.
        last_used_at: Consumption time. NULL = unused.
        request_ip: Client IP of the request that issued the token (audit).
        user_agent: User-Agent of that request (audit).
    """

    __tablename__ = "user_one_time_token"
    __table_args__ = (
        CheckConstraint(
            "purpose IN ('email_verification', 'password_reset')",
            name="ck_user_one_time_token_purpose",
        ),
        Index(
            "uq_user_one_time_token_user_purpose_unused",
            "user_id",
            "purpose",
            unique=True,
            postgresql_where=text("last_used_at IS NULL"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=_DEFAULT_UUID,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("app_user.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    purpose: Mapped[str] = mapped_column(String(20), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    last_used_at: Mapped[datetime | None] = mapped_column(nullable=True)
    request_ip: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text(), nullable=True)

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="one_time_tokens")
