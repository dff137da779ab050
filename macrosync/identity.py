"""Identity providers: who is acting, and when that changes."""

import logging
from typing import Callable, List, Optional, Protocol

from supabase import AsyncClient

logger = logging.getLogger(__name__)

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
TOKEN_REFRESHED = "TOKEN_REFRESHED"

AuthListener = Callable[[str], None]


class IdentityProvider(Protocol):
    async def current_user_id(self) -> Optional[str]: ...

    def subscribe(self, listener: AuthListener) -> None: ...

    def unsubscribe(self) -> None: ...


class StaticIdentity:
    """Fixed identity, with manual event emission (CLI and tests)."""

    def __init__(self, user_id: Optional[str] = None):
        self.user_id = user_id
        self._listeners: List[AuthListener] = []

    async def current_user_id(self) -> Optional[str]:
        return self.user_id

    def subscribe(self, listener: AuthListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self) -> None:
        self._listeners.clear()

    def emit(self, event: str) -> None:
        for listener in list(self._listeners):
            listener(event)


class SupabaseIdentity:
    """Identity taken from the supabase auth session."""

    def __init__(self, client: AsyncClient):
        self._client = client
        self._subscription = None

    async def current_user_id(self) -> Optional[str]:
        session = await self._client.auth.get_session()
        user = getattr(session, "user", None) if session else None
        return getattr(user, "id", None)

    async def sign_in(self, email: str, password: str) -> Optional[str]:
        response = await self._client.auth.sign_in_with_password(
            {"email": email, "password": password}
        )
        user = getattr(response, "user", None)
        return getattr(user, "id", None)

    def subscribe(self, listener: AuthListener) -> None:
        def _on_change(event, _session):
            listener(str(event))

        self._subscription = self._client.auth.on_auth_state_change(_on_change)

    def unsubscribe(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
