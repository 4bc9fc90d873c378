# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""Tests for bounded message channels."""

from __future__ import annotations

import threading
import time

import pytest

from qhybrid.errors import ChannelClosed, ChannelFull, ChannelTimeout
from qhybrid.kernel.channel import BackpressurePolicy, Channel
from qhybrid.kernel.messages import ControlSignal, MeasurementRequest


def _request(i: int) -> MeasurementRequest:
    return MeasurementRequest(sender="test", job_id=f"job-{i}")


class TestChannel:
    """Ordering, backpressure and close semantics."""

    def test_fifo_per_direction(self) -> None:
        channel = Channel(capacity=8)
        for i in range(5):
            channel.endpoint_a.send(_request(i))
        channel.endpoint_b.send(ControlSignal(job_id="back"))
        got = [channel.endpoint_b.recv(timeout=1).job_id for _ in range(5)]
        assert got == [f"job-{i}" for i in range(5)]
        assert channel.endpoint_a.recv(timeout=1).job_id == "back"

    def test_reject_policy(self) -> None:
        channel = Channel(capacity=2, policy=BackpressurePolicy.REJECT)
        channel.endpoint_a.send(_request(0))
        channel.endpoint_a.send(_request(1))
        with pytest.raises(ChannelFull):
            channel.endpoint_a.send(_request(2))
        assert channel.pending() == (2, 0)

    def test_block_policy_times_out(self) -> None:
        channel = Channel(capacity=1, policy="block")
        channel.endpoint_a.send(_request(0))
        with pytest.raises(ChannelFull):
            channel.endpoint_a.send(_request(1), timeout=0.05)

    def test_block_policy_resumes_when_drained(self) -> None:
        channel = Channel(capacity=1)
        channel.endpoint_a.send(_request(0))

        def drain() -> None:
            time.sleep(0.05)
            channel.endpoint_b.recv(timeout=1)

        t = threading.Thread(target=drain)
        t.start()
        channel.endpoint_a.send(_request(1), timeout=2)
        t.join()
        assert channel.endpoint_b.recv(timeout=1).job_id == "job-1"

    def test_recv_timeout(self) -> None:
        channel = Channel()
        with pytest.raises(ChannelTimeout):
            channel.endpoint_b.recv(timeout=0.01)
        assert channel.endpoint_b.try_recv() is None

    def test_close_drains_then_raises(self) -> None:
        channel = Channel()
        channel.endpoint_a.send(_request(0))
        channel.endpoint_a.close()
        assert channel.closed
        assert channel.endpoint_b.recv(timeout=1).job_id == "job-0"
        with pytest.raises(ChannelClosed):
            channel.endpoint_b.recv(timeout=1)
        with pytest.raises(ChannelClosed):
            channel.endpoint_b.send(_request(1))

    def test_close_wakes_blocked_receiver(self) -> None:
        channel = Channel()
        errors: list[BaseException] = []

        def receiver() -> None:
            try:
                channel.endpoint_b.recv()
            except ChannelClosed as exc:
                errors.append(exc)

        t = threading.Thread(target=receiver)
        t.start()
        time.sleep(0.05)
        channel.close()
        t.join(timeout=2)
        assert len(errors) == 1

    def test_only_messages(self) -> None:
        channel = Channel()
        with pytest.raises(TypeError):
            channel.endpoint_a.send({"job_id": "x"})  # type: ignore[arg-type]

    def test_invalid_capacity(self) -> None:
        with pytest.raises(ValueError):
            Channel(capacity=0)
