"""Account credentials and access-token lifecycle."""

from src.credentials.schemas import AuthenticationError, CredentialState, TokenStatus
from src.credentials.store import CredentialStore

__all__ = ["AuthenticationError", "CredentialState", "CredentialStore", "TokenStatus"]
