"""Stremio implementations of the device auth ports."""

from typing import TYPE_CHECKING

from ..api.exceptions import AuthExpiredError
from ..api.link import DeviceCode, LinkReadResult
from .ports import IDeviceLinkAPI, IIdentityAPI

if TYPE_CHECKING:
    from ..api.client import StremioClient
    from ..api.link import StremioLinkClient


class StremioDeviceLinkAdapter(IDeviceLinkAPI):
    """IDeviceLinkAPI over StremioLinkClient."""

    def __init__(self, client: "StremioLinkClient"):
        self.client = client

    async def create_device_code(self) -> DeviceCode:
        return await self.client.create_device_code()

    async def read_device_code(self, code: str) -> LinkReadResult:
        return await self.client.read_device_code(code)


class StremioIdentityAdapter(IIdentityAPI):
    """IIdentityAPI over StremioClient.getUser."""

    def __init__(self, client: "StremioClient"):
        self.client = client

    async def get_account_email(self, auth_key: str) -> str:
        user = await self.client.get_user(auth_key)
        email = user.get("email")
        if not email:
            raise AuthExpiredError("Stremio account has no e-mail for this credential")
        return email
