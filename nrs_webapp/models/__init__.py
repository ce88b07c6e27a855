"""SQLAlchemy ORM models for nrs-webapp.

All models are exported from this module for convenient imports:
    from nrs_webapp.models import User, UserOneTimeToken, OAuthLink

Models are organized by domain:
- user.py: User (local account)
- one_time_token.py: UserOneTimeToken, TokenPurpose (email verification, password reset)
- oauth_link.py: OAuthLink (external provider identities)
"""

from nrs_webapp.models.base import Base, TimestampMixin
from nrs_webapp.models.oauth_link import OAuthLink
from nrs_webapp.models.one_time_token import TokenPurpose, UserOneTimeToken
from nrs_webapp.models.user import User

__all__ = [
    "Base",
    "OAuthLink",
    "TimestampMixin",
    "TokenPurpose",
    "User",
    "UserOneTimeToken",
]
