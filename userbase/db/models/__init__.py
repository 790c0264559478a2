# userbase/db/models/__init__.py

from .user import User, UserStatus
from .identity import Identity, IdentityType, IDENTIFIER_COLUMNS
from .challenge import AuthChallenge
from .session import UserSession
from .auth_method import AuthMethod, MagicLinkToken, EMAIL_MAGIC
from .soft_content import SoftPost, SoftVote
from .merge import UserMerge

__all__ = [
    'User',
    'UserStatus',
    'Identity',
    'IdentityType',
    'IDENTIFIER_COLUMNS',
    'AuthChallenge',
    'UserSession',
    'AuthMethod',
    'MagicLinkToken',
    'EMAIL_MAGIC',
    'SoftPost',
    'SoftVote',
    'UserMerge',
]
