"""Identity of the signed-in user.

Every planner and move endpoint is scoped by the user's identity (their
e-mail address).  The CLI sets it once from ``PLANCAL_EMAIL``; an embedding
application sets it per request.  Code that needs it calls
``current_user_identity()``, which is what the components receive as their
``identity_provider``.
"""

from contextvars import ContextVar

_current_identity: ContextVar[str | None] = ContextVar("current_user_identity", default=None)
_current_token: ContextVar[str | None] = ContextVar("current_user_token", default=None)


def current_user_identity() -> str | None:
    """Return the current user identity, or ``None`` when signed out."""
    return _current_identity.get()


def set_user_identity(identity: str | None) -> None:
    _current_identity.set(identity or None)


def current_access_token() -> str | None:
    """Bearer token for the current user (``None`` when signed out)."""
    return _current_token.get()


def set_access_token(token: str | None) -> None:
    _current_token.set(token or None)
