"""In-process registry of running device auth flows.

The HTTP layer creates a flow per request and hands back its id; later
requests read or cancel it. Finished flows are pruned after ``retention``
seconds so their final state can still be read for a while.
"""

import asyncio
import logging
import time
import uuid
from typing import Callable, Optional

from .device_flow import DeviceAuthFlow

logger = logging.getLogger(__name__)


class DeviceAuthRegistry:
    """Keeps DeviceAuthFlows addressable by id."""

    def __init__(self, retention: float = 600.0, clock: Callable[[], float] = time.time):
        self.retention = retention
        self._clock = clock
        self._flows: dict[str, DeviceAuthFlow] = {}
        self._finished_at: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._flows)

    def add(self, flow: DeviceAuthFlow) -> str:
        """Register a flow and return its id."""
        self.prune()
        flow_id = uuid.uuid4().hex
        self._flows[flow_id] = flow
        return flow_id

    def get(self, flow_id: str) -> Optional[DeviceAuthFlow]:
        self.prune()
        return self._flows.get(flow_id)

    def cancel(self, flow_id: str) -> bool:
        """Cancel a flow. Returns False if the id is unknown."""
        flow = self._flows.get(flow_id)
        if flow is None:
            return False
        flow.cancel()
        return True

    def cancel_all(self) -> int:
        """Cancel every running flow."""
        cancelled = sum(1 for flow in self._flows.values() if flow.cancel())
        if cancelled:
            logger.info(f"Cancelled {cancelled} device auth flow(s)")
        return cancelled

    async def shutdown(self) -> int:
        """Cancel every running flow and wait until their tasks have ended.

        Call before closing the clients the flows poll through.
        """
        flows = list(self._flows.values())
        cancelled = self.cancel_all()
        await asyncio.gather(*(flow.wait() for flow in flows))
        return cancelled

    def prune(self) -> int:
        """Drop flows that ended more than ``retention`` seconds ago."""
        now = self._clock()
        for flow_id, flow in self._flows.items():
            if flow.is_terminal:
                self._finished_at.setdefault(flow_id, now)

        expired = [i for i, t in self._finished_at.items() if now - t >= self.retention]
        for flow_id in expired:
            self._flows.pop(flow_id, None)
            del self._finished_at[flow_id]
        return len(expired)
