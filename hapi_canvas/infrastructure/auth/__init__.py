"""
Auth Module

Canvas OAuth credential lifecycle: models, stores and the token manager.
"""

from .credential_store import (
    CredentialStore,
    IdentityCipher,
    InMemoryCredentialStore,
    RedisCredentialStore,
    TokenCipher,
)
from .models import AccessToken, CanvasUser, CredentialRecord, TokenExchangeResult
from .token_manager import TokenLifecycleManager

__all__ = [
    "TokenLifecycleManager",
    "CredentialStore",
    "InMemoryCredentialStore",
    "RedisCredentialStore",
    "TokenCipher",
    "IdentityCipher",
    "AccessToken",
    "CanvasUser",
    "CredentialRecord",
    "TokenExchangeResult",
]
