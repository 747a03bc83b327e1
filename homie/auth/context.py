"""
Auth context - who is making this request.

This is the lightweight object passed to route handlers once the auth
gate has resolved the session cookie.
"""

from __future__ import annotations

from dataclasses import dataclass

from homie.core.models import Session, User


@dataclass
class AuthContext:
    """
    Authenticated principal for a request.

    Usage in routes:
        async def my_route(ctx: AuthContext = Depends(require_session)):
            print(f"User {ctx.user_id} with session expiring {ctx.session.expires_at}")
    """

    session: Session
    user: User

    @property
    def user_id(self) -> str:
        return self.user.id
