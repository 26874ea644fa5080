"""Device authentication and session state.

- DeviceAuthFlow: polling state machine for the device link login
- DeviceAuthRegistry: running flows addressable by id
- AuthSession / ISessionStore / SessionManager: session lifecycle
- AuthStateChannel: pub/sub for login, logout and expiry events
"""

from .adapters import StremioDeviceLinkAdapter, StremioIdentityAdapter
from .device_flow import (
    TERMINAL_STATES,
    DeviceAuthFlow,
    DeviceAuthSession,
    FailureReason,
    FlowState,
)
from .ports import IDeviceLinkAPI, IIdentityAPI
from .registry import DeviceAuthRegistry
from .session import (
    AuthEvent,
    AuthSession,
    AuthStateChannel,
    InMemorySessionStore,
    ISessionStore,
    SessionManager,
)

__all__ = [
    # Flow
    "DeviceAuthFlow",
    "DeviceAuthSession",
    "DeviceAuthRegistry",
    "FailureReason",
    "FlowState",
    "TERMINAL_STATES",
    # Ports and adapters
    "IDeviceLinkAPI",
    "IIdentityAPI",
    "StremioDeviceLinkAdapter",
    "StremioIdentityAdapter",
    # Sessions
    "AuthEvent",
    "AuthSession",
    "AuthStateChannel",
    "InMemorySessionStore",
    "ISessionStore",
    "SessionManager",
]
