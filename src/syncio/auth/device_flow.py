"""Device Auth Flow - Polling state machine for "open this link" login.

States:
    idle -> creating -> awaiting_user -> completing -> completed
                                                    -> expired | failed
    cancelled is reachable from every non-terminal state.

Workflow:
1. ``start()`` creates a code/link pair and waits until the link is ready
2. One timer polls the code every ``poll_interval`` seconds; polls never
   overlap, a new poll starts only after the previous one has resolved
3. A credential moves the flow to ``completing``: the optional identity
   check runs, then the completion callback receives the credential once
4. The code expires ``ttl`` seconds after creation

Every terminal condition is reported as a state plus a reason. Listener
errors are logged, never raised to the host.

Example:
    flow = DeviceAuthFlow(
        link_api=StremioDeviceLinkAdapter(link_client),
        on_credential=lambda key: user_repo.set_auth_key(user_id, key),
        on_link_ready=lambda session: print(session.link),
    )
    await flow.start()
    state = await flow.wait()
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from ..api.exceptions import IdentityMismatchError, SyncioError, TransientRemoteError
from ..api.link import LinkReadResult, LinkReadState
from .ports import IDeviceLinkAPI, IIdentityAPI

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_TTL = 300.0
DEFAULT_POLL_TIMEOUT = 10.0


class FlowState(str, Enum):
    """Lifecycle states of a device auth flow."""

    IDLE = "idle"
    CREATING = "creating"
    AWAITING_USER = "awaiting_user"
    COMPLETING = "completing"
    COMPLETED = "completed"
    EXPIRED = "expired"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({
    FlowState.COMPLETED,
    FlowState.EXPIRED,
    FlowState.FAILED,
    FlowState.CANCELLED,
})


class FailureReason(str, Enum):
    """Why a flow ended in ``failed`` or ``expired``."""

    CREATE_FAILED = "create_failed"
    LINK_ERROR = "link_error"
    IDENTITY_MISMATCH = "identity_mismatch"
    COMPLETION_FAILED = "completion_failed"
    CODE_EXPIRED = "code_expired"
    UNEXPECTED_ERROR = "unexpected_error"


@dataclass
class DeviceAuthSession:
    """The live code of one flow. Dropped when the flow ends."""

    code: str
    link: str
    created_at: float
    expires_at: float
    consumed_credential: Optional[str] = field(default=None, repr=False)

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def time_remaining(self, now: float) -> float:
        return max(0.0, self.expires_at - now)


Listener = Callable[..., Any]


class DeviceAuthFlow:
    """One device login, from code creation to a verified credential.

    Args:
        link_api: Port used to create and poll codes
        on_credential: Completion callback, receives the credential once
        on_link_ready: Called with the DeviceAuthSession when the link can be shown
        on_expired: Called with (reason, message) when the code expires
        on_error: Called with (reason, message) when the flow fails
        identity_api: Port used to verify who the credential belongs to
        expected_email: If set, the credential must belong to this account
        poll_interval: Seconds between polls
        ttl: Seconds a code stays valid
        poll_timeout: Seconds a single poll may take
        clock: Time source, seconds
        sleep: Awaitable sleep used by the poll timer
    """

    def __init__(
        self,
        link_api: IDeviceLinkAPI,
        on_credential: Optional[Callable[[str], Any]] = None,
        on_link_ready: Optional[Listener] = None,
        on_expired: Optional[Listener] = None,
        on_error: Optional[Listener] = None,
        identity_api: Optional[IIdentityAPI] = None,
        expected_email: Optional[str] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        ttl: float = DEFAULT_TTL,
        poll_timeout: float = DEFAULT_POLL_TIMEOUT,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.link_api = link_api
        self.on_credential = on_credential
        self.on_link_ready = on_link_ready
        self.on_expired = on_expired
        self.on_error = on_error
        self.identity_api = identity_api
        self.expected_email = expected_email
        self.poll_interval = poll_interval
        self.ttl = ttl
        self.poll_timeout = poll_timeout
        self._clock = clock
        self._sleep = sleep

        self.state = FlowState.IDLE
        self.history: list[FlowState] = [FlowState.IDLE]
        self.reason: Optional[FailureReason] = None
        self.message: Optional[str] = None
        self.session: Optional[DeviceAuthSession] = None
        self.polls = 0

        self._task: Optional[asyncio.Task] = None
        self._ready = asyncio.Event()
        self._poll_lock = asyncio.Lock()
        self._next_poll_at = 0.0

    # ----------------------------------------
    # Public API
    # ----------------------------------------

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> FlowState:
        """Create a code and start polling.

        Returns once the link is ready or the flow already ended. Calling
        ``start()`` on a running flow is a no-op; calling it after a
        terminal state starts over with a fresh code.

        Returns:
            The state after start-up (usually ``awaiting_user``)
        """
        if self.is_running:
            return self.state

        self._reset()
        self._task = asyncio.create_task(self._run())
        await self._ready.wait()
        return self.state

    def cancel(self) -> bool:
        """Stop the flow immediately, including any in-flight request.

        Safe in every state, before ``start()`` included. The completion
        callback is not called.

        Returns:
            True if the flow moved to ``cancelled``
        """
        if self.is_terminal:
            return False

        self._transition(FlowState.CANCELLED)
        self.session = None
        self._ready.set()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        logger.info("Device auth flow cancelled")
        return True

    async def wait(self) -> FlowState:
        """Wait until the current run ends and return the final state."""
        if self._task is not None:
            await asyncio.wait({self._task})
        return self.state

    async def poll_now(self) -> Optional[LinkReadResult]:
        """Poll the code once, outside the timer.

        No-op (returns None) unless the flow is awaiting the user and no
        other poll is in flight.
        """
        if self.state != FlowState.AWAITING_USER or self._poll_lock.locked():
            return None
        async with self._poll_lock:
            return await self._poll_once()

    def snapshot(self) -> dict[str, Any]:
        """Serializable view of the flow, without the credential."""
        now = self._clock()
        return {
            "state": self.state.value,
            "link": self.session.link if self.session else None,
            "code": self.session.code if self.session else None,
            "expires_in": self.session.time_remaining(now) if self.session else None,
            "reason": self.reason.value if self.reason else None,
            "message": self.message,
            "polls": self.polls,
        }

    # ----------------------------------------
    # State machine
    # ----------------------------------------

    def _reset(self) -> None:
        self.state = FlowState.IDLE
        self.history = [FlowState.IDLE]
        self.reason = None
        self.message = None
        self.session = None
        self.polls = 0
        self._ready = asyncio.Event()

    def _transition(self, state: FlowState) -> None:
        logger.debug(f"Device auth flow: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    async def _run(self) -> None:
        try:
            if await self._create():
                await self._poll_loop()
        except asyncio.CancelledError:
            if not self.is_terminal:
                self._transition(FlowState.CANCELLED)
                self.session = None
            raise
        except Exception as e:
            logger.exception("Device auth flow crashed")
            await self._finish(FlowState.FAILED, FailureReason.UNEXPECTED_ERROR, str(e))
        finally:
            self._ready.set()

    async def _create(self) -> bool:
        self._transition(FlowState.CREATING)
        try:
            device_code = await self.link_api.create_device_code()
        except Exception as e:
            logger.warning(f"Could not create device code: {e}")
            await self._finish(FlowState.FAILED, FailureReason.CREATE_FAILED, str(e))
            return False

        now = self._clock()
        self.session = DeviceAuthSession(
            code=device_code.code,
            link=device_code.link,
            created_at=now,
            expires_at=now + self.ttl,
        )
        self._next_poll_at = now + self.poll_interval
        self._transition(FlowState.AWAITING_USER)
        logger.info(f"Device link ready, valid for {self.ttl:.0f}s")

        await self._emit(self.on_link_ready, self.session)
        self._ready.set()
        return self.state == FlowState.AWAITING_USER

    async def _poll_loop(self) -> None:
        while self.state == FlowState.AWAITING_USER and self.session is not None:
            now = self._clock()
            if self.session.is_expired(now):
                await self._finish(
                    FlowState.EXPIRED,
                    FailureReason.CODE_EXPIRED,
                    "The link expired before it was approved",
                )
                return

            if now < self._next_poll_at:
                await self._sleep(min(self._next_poll_at, self.session.expires_at) - now)
                continue

            async with self._poll_lock:
                # A manual poll may have run while we waited for the lock
                if self._clock() >= self._next_poll_at:
                    await self._poll_once()

    async def _poll_once(self) -> Optional[LinkReadResult]:
        session = self.session
        if self.state != FlowState.AWAITING_USER or session is None:
            return None
        if session.is_expired(self._clock()):
            return None

        started = self._clock()
        self.polls += 1
        try:
            result = await asyncio.wait_for(
                self.link_api.read_device_code(session.code),
                timeout=self.poll_timeout,
            )
        except (TransientRemoteError, asyncio.TimeoutError) as e:
            logger.warning(f"Device code poll failed, will retry: {str(e) or 'timeout'}")
            return None
        except SyncioError as e:
            await self._finish(FlowState.FAILED, FailureReason.LINK_ERROR, str(e))
            return None
        finally:
            self._next_poll_at = max(started + self.poll_interval, self._clock())

        if self.state != FlowState.AWAITING_USER:
            return None

        if result.state == LinkReadState.CREDENTIAL:
            await self._complete(result.auth_key)
        elif result.state == LinkReadState.ERROR:
            await self._finish(
                FlowState.FAILED,
                FailureReason.LINK_ERROR,
                result.message or f"Link API error {result.error_code}",
            )
        return result

    async def _complete(self, credential: str) -> None:
        """Verify and deliver a credential. Runs at most once per code."""
        self._transition(FlowState.COMPLETING)
        self.session.consumed_credential = credential

        try:
            await self._verify_identity(credential)
            if self.on_credential is not None:
                result = self.on_credential(credential)
                if inspect.isawaitable(result):
                    await result
        except IdentityMismatchError as e:
            logger.warning(f"Device auth identity mismatch: {e}")
            await self._finish(FlowState.FAILED, FailureReason.IDENTITY_MISMATCH, e.message)
            return
        except Exception as e:
            logger.warning(f"Credential could not be completed: {e}")
            await self._finish(FlowState.FAILED, FailureReason.COMPLETION_FAILED, str(e))
            return

        await self._finish(FlowState.COMPLETED)

    async def _verify_identity(self, credential: str) -> None:
        if not self.expected_email or self.identity_api is None:
            return
        email = await self.identity_api.get_account_email(credential)
        if (email or "").strip().lower() != self.expected_email.strip().lower():
            raise IdentityMismatchError(expected=self.expected_email, actual=email)

    async def _finish(
        self,
        state: FlowState,
        reason: Optional[FailureReason] = None,
        message: Optional[str] = None,
    ) -> None:
        if self.is_terminal:
            return

        self._transition(state)
        self.reason = reason
        self.message = message
        self.session = None
        self._ready.set()

        if state == FlowState.COMPLETED:
            logger.info("Device auth flow completed")
        elif state == FlowState.EXPIRED:
            logger.info("Device auth flow expired")
            await self._emit(self.on_expired, reason.value, message)
        elif state == FlowState.FAILED:
            logger.warning(f"Device auth flow failed ({reason.value}): {message}")
            await self._emit(self.on_error, reason.value, message)

    async def _emit(self, listener: Optional[Listener], *args: Any) -> None:
        if listener is None:
            return
        try:
            result = listener(*args)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Device auth listener raised")
