"""Port interfaces for device authentication.

DeviceAuthFlow depends on these contracts only; the Stremio adapters in
``adapters.py`` implement them over the HTTP clients.
"""

from abc import ABC, abstractmethod

from ..api.link import DeviceCode, LinkReadResult


class IDeviceLinkAPI(ABC):
    """Port for creating and polling device codes."""

    @abstractmethod
    async def create_device_code(self) -> DeviceCode:
        """Create a new code/link pair.

        Raises:
            SyncioError: If no code could be created
        """
        ...

    @abstractmethod
    async def read_device_code(self, code: str) -> LinkReadResult:
        """Poll a code once.

        Returns:
            LinkReadResult that is pending, carries a credential, or an error

        Raises:
            TransientRemoteError: Network failure or 5xx, safe to poll again
        """
        ...


class IIdentityAPI(ABC):
    """Port for resolving the account behind a credential."""

    @abstractmethod
    async def get_account_email(self, auth_key: str) -> str:
        """Return the e-mail of the account the credential belongs to.

        Raises:
            AuthExpiredError: If the credential is not valid
        """
        ...
