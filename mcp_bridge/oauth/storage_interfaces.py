# mcp_bridge/oauth/storage_interfaces.py
import logging
from abc import ABC, abstractmethod
from typing import Optional

from .models import AuthorizationCode, AuthorizationSession, RegisteredClient

logger = logging.getLogger(__name__)


class AbstractAuthSessionStore(ABC):
    """Short-lived authorization sessions keyed by the bridge's internal state."""

    @abstractmethod
    async def save_session(self, session: AuthorizationSession) -> None:
        pass

    @abstractmethod
    async def consume_session(self, internal_state: str) -> Optional[AuthorizationSession]:
        """Delete and return the session in one atomic step. None if absent or expired."""
        pass

    @abstractmethod
    async def purge_expired(self) -> int:
        pass

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the storage backend."""
        pass

    @abstractmethod
    async def teardown(self) -> None:
        """Clean up storage resources."""
        pass


class AbstractAuthCodeStore(ABC):
    """Single-use authorization codes issued by the bridge."""

    @abstractmethod
    async def save_auth_code(self, auth_code: AuthorizationCode) -> None:
        pass

    @abstractmethod
    async def consume_auth_code(self, code: str) -> Optional[AuthorizationCode]:
        """
        Delete and return the code in one atomic step.

        A second caller presenting the same code gets None, never a stale copy.
        """
        pass

    @abstractmethod
    async def purge_expired(self) -> int:
        pass

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the storage backend."""
        pass

    @abstractmethod
    async def teardown(self) -> None:
        """Clean up storage resources."""
        pass


class AbstractClientStore(ABC):
    """Dynamically registered OAuth clients. Records never expire."""

    @abstractmethod
    async def save_client(self, client: RegisteredClient) -> None:
        pass

    @abstractmethod
    async def load_client(self, client_id: str) -> Optional[RegisteredClient]:
        pass

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the storage backend."""
        pass

    @abstractmethod
    async def teardown(self) -> None:
        """Clean up storage resources."""
        pass
