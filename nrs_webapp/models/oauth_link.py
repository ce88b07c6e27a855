"""OAuth link model - external provider identities tied to a local user.

Access and refresh tokens are Fernet-encrypted at the application layer
before storage. Links are revoked by setting revoked_at, never deleted, and
the uniqueness rules only apply to active (unrevoked) rows.
"""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Index, String, Text, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from nrs_webapp.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from nrs_webapp.models.user import User

_DEFAULT_UUID = text("gen_random_uuid()")
_ACTIVE = text("revoked_at IS NULL")


class OAuthLink(Base, TimestampMixin):
    """Provider connection for a user.

    Attributes:
        id: UUID primary key.
        user_id: FK to app_user.
        provider: Provider name ("google", "github").
        provider_user_id: Provider's subject id for the user.
        issuer: OIDC issuer, NULL for plain OAuth2 providers.
        access_token: Encrypted access token.
        refresh_token: Encrypted refresh token, if the provider issued one.
        access_token_expires_at: Access token expiry, if known.
        revoked_at: Revocation time. NULL = active.
        created_at: Link creation timestamp (from TimestampMixin).
        updated_at: Last token refresh (from TimestampMixin).
    """

    __tablename__ = "app_user_oauth_link"
    __table_args__ = (
        Index(
            "uq_app_user_oauth_link_user_provider_active",
            "user_id",
            "provider",
            unique=True,
            postgresql_where=_ACTIVE,
        ),
        Index(
            "uq_app_user_oauth_link_provider_subject_active",
            "provider",
            "provider_user_id",
            unique=True,
            postgresql_where=_ACTIVE,
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
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    provider_user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    issuer: Mapped[str | None] = mapped_column(Text(), nullable=True)
    access_token: Mapped[str] = mapped_column(Text(), nullable=False)
    refresh_token: Mapped[str | None] = mapped_column(Text(), nullable=True)
    access_token_expires_at: Mapped[datetime | None] = mapped_column(nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="oauth_links")

    @property
    def is_active(self) -> bool:
        return self.revoked_at is None
