# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""
Bounded, ordered, bidirectional message channels.

A :class:`Channel` joins two endpoints. Each direction is an independent
FIFO queue bounded by ``capacity``; messages are never reordered or
coalesced. When a direction is full, the channel's
:class:`BackpressurePolicy` decides whether ``send`` blocks or fails.

Closing either endpoint closes the whole channel: blocked senders and
receivers wake up with :class:`~qhybrid.errors.ChannelClosed`. Messages
queued before the close can still be received.

Examples
--------
>>> channel = Channel(capacity=4)
>>> channel.endpoint_a.send(MeasurementRequest(job_id="..."))
>>> msg = channel.endpoint_b.recv(timeout=1.0)
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from enum import Enum

from qhybrid.errors import ChannelClosed, ChannelFull, ChannelTimeout
from qhybrid.kernel.messages import Message
from qhybrid.utils.common import generate_ulid


logger = logging.getLogger(__name__)


class BackpressurePolicy(str, Enum):
    """Behaviour of ``send`` on a full direction."""

    BLOCK = "block"
    REJECT = "reject"


class Channel:
    """
    Two endpoints joined by two bounded FIFO queues.

    Parameters
    ----------
    capacity : int
        Maximum queued messages per direction.
    policy : BackpressurePolicy
        What a sender does when its direction is full.
    name : str, optional
        Identifier used in errors and logs. Defaults to a ULID.
    """

    def __init__(
        self,
        capacity: int = 64,
        policy: BackpressurePolicy | str = BackpressurePolicy.BLOCK,
        name: str | None = None,
    ) -> None:
        if capacity < 1:
            raise ValueError("Channel capacity must be >= 1")
        self.capacity = capacity
        self.policy = BackpressurePolicy(policy)
        self.channel_id = name or generate_ulid()
        self._queues: tuple[deque[Message], deque[Message]] = (deque(), deque())
        self._cond = threading.Condition()
        self._closed = False
        self.endpoint_a = ChannelEndpoint(self, outbound=0, inbound=1, label="a")
        self.endpoint_b = ChannelEndpoint(self, outbound=1, inbound=0, label="b")

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def close(self) -> None:
        """Close the channel and wake every blocked sender and receiver."""
        with self._cond:
            if self._closed:
                return
            self._closed = True
            self._cond.notify_all()
        logger.debug("Channel %s closed", self.channel_id)

    def pending(self) -> tuple[int, int]:
        """Queued message counts for the a->b and b->a directions."""
        with self._cond:
            return len(self._queues[0]), len(self._queues[1])

    # -- used by endpoints -------------------------------------------------

    def _send(self, direction: int, message: Message, timeout: float | None) -> None:
        if not isinstance(message, Message):
            raise TypeError(f"Channels carry Message instances, got {type(message)!r}")
        queue = self._queues[direction]
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                if self._closed:
                    raise ChannelClosed(self.channel_id)
                if len(queue) < self.capacity:
                    queue.append(message)
                    self._cond.notify_all()
                    return
                if self.policy is BackpressurePolicy.REJECT:
                    raise ChannelFull(self.channel_id, self.capacity)
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    raise ChannelFull(self.channel_id, self.capacity)
                self._cond.wait(remaining)

    def _recv(self, direction: int, timeout: float | None) -> Message:
        queue = self._queues[direction]
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                if queue:
                    message = queue.popleft()
                    self._cond.notify_all()
                    return message
                if self._closed:
                    raise ChannelClosed(self.channel_id)
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    raise ChannelTimeout(self.channel_id, timeout or 0.0)
                self._cond.wait(remaining)

    def _try_recv(self, direction: int) -> Message | None:
        queue = self._queues[direction]
        with self._cond:
            if queue:
                message = queue.popleft()
                self._cond.notify_all()
                return message
            if self._closed:
                raise ChannelClosed(self.channel_id)
            return None

    def __repr__(self) -> str:
        return (
            f"Channel(id={self.channel_id!r}, capacity={self.capacity}, "
            f"policy={self.policy.value}, closed={self._closed})"
        )


class ChannelEndpoint:
    """One side of a :class:`Channel`."""

    def __init__(self, channel: Channel, outbound: int, inbound: int, label: str):
        self.channel = channel
        self._outbound = outbound
        self._inbound = inbound
        self.label = label

    def send(self, message: Message, timeout: float | None = None) -> None:
        """
        Queue ``message`` for the peer endpoint.

        Raises
        ------
        ChannelFull
            Immediately under ``REJECT``, or when ``timeout`` elapses under
            ``BLOCK``.
        ChannelClosed
            If the channel is, or becomes, closed.
        """
        self.channel._send(self._outbound, message, timeout)

    def recv(self, timeout: float | None = None) -> Message:
        """
        Take the oldest message sent by the peer, blocking until one arrives.

        Raises
        ------
        ChannelTimeout
            If nothing arrives within ``timeout`` seconds.
        ChannelClosed
            If the channel is closed and nothing is left to receive.
        """
        return self.channel._recv(self._inbound, timeout)

    def try_recv(self) -> Message | None:
        """Non-blocking receive; ``None`` when nothing is queued."""
        return self.channel._try_recv(self._inbound)

    def close(self) -> None:
        self.channel.close()

    def __repr__(self) -> str:
        return f"ChannelEndpoint({self.channel.channel_id!r}, {self.label})"
