"""Session-cookie authentication backed by Firebase."""

from quizmint.auth.identity import (
    FakeIdentityProvider,
    FirebaseIdentityProvider,
    Identity,
    IdentityError,
    IdentityProviderBase,
    IdentityUnavailableError,
)
from quizmint.auth.middleware import ANONYMOUS, SessionMiddleware, Viewer, get_viewer

__all__ = [
    "Identity",
    "IdentityError",
    "IdentityUnavailableError",
    "IdentityProviderBase",
    "FirebaseIdentityProvider",
    "FakeIdentityProvider",
    "SessionMiddleware",
    "Viewer",
    "ANONYMOUS",
    "get_viewer",
]
