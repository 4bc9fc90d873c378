# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2026 qhybrid

"""
Kernel side of a process channel.

A :class:`ChannelServer` receives requests on the kernel endpoint of a
channel and answers them on behalf of one :class:`ProcessClient`, so every
request is checked against that process's capabilities. Job completion is
reported asynchronously: a final :class:`StatisticsSnapshot` on success,
an :class:`ErrorReply` otherwise. With ``snapshot_interval > 0`` the
server also streams incremental snapshots while shots are sampled.

Replies produced by job callbacks run on scheduler threads and never wait
for room on the channel: when the peer is not reading they go to a bounded
outbox that the serving thread flushes.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import TYPE_CHECKING

from qhybrid.config import Config
from qhybrid.errors import ChannelClosed, ChannelFull, ChannelTimeout, JobCancelled, QHybridError
from qhybrid.kernel.messages import (
    Acknowledge,
    AckStatus,
    CircuitProgramSubmit,
    ControlKind,
    ControlSignal,
    ErrorReply,
    MeasurementBatch,
    MeasurementRequest,
    Message,
    StatisticsSnapshot,
)
from qhybrid.measurement.aggregator import StreamAggregator
from qhybrid.measurement.events import MeasurementEvent
from qhybrid.measurement.statistics import MeasurementStatistics
from qhybrid.scheduler.context import EntityState, QuantumJobContext, SchedulableEntity


if TYPE_CHECKING:
    from qhybrid.kernel.channel import ChannelEndpoint
    from qhybrid.kernel.session import ProcessClient


logger = logging.getLogger(__name__)

SENDER = "kernel"

#: Code for a message type the server does not handle.
UNSUPPORTED_MESSAGE_CODE = 1


class ChannelServer:
    """
    Serve one channel endpoint in a background thread.

    Parameters
    ----------
    client : ProcessClient
        Process on whose behalf requests are executed.
    endpoint : ChannelEndpoint
        Kernel-side endpoint.
    config : Config
        Supplies ``reply_timeout``, ``snapshot_interval`` and
        ``tick_interval``.
    """

    def __init__(self, client: ProcessClient, endpoint: ChannelEndpoint, config: Config) -> None:
        self.client = client
        self.endpoint = endpoint
        self.config = config
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._outbox: deque[Message] = deque()
        self._outbox_lock = threading.Lock()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._serve,
            name=f"qhybrid-channel-{self.endpoint.channel.channel_id}",
            daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: float | None = 1.0) -> None:
        """Close the channel and wait for the serving thread to exit."""
        self._stop.set()
        self.endpoint.close()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Loop
    # -------------------------------------------------------------------------

    def _serve(self) -> None:
        logger.debug("Channel server for %s started", self.client.process_id)
        while not self._stop.is_set():
            self.flush()
            try:
                message = self.endpoint.recv(timeout=self.config.tick_interval)
            except ChannelTimeout:
                continue
            except ChannelClosed:
                break
            self.handle(message)
        logger.debug("Channel server for %s stopped", self.client.process_id)

    def handle(self, message: Message) -> None:
        """Answer one request. Errors become :class:`ErrorReply` messages."""
        job_id = getattr(message, "job_id", None)
        try:
            if isinstance(message, CircuitProgramSubmit):
                self._on_submit(message)
            elif isinstance(message, MeasurementRequest):
                self._on_measurement_request(message)
            elif isinstance(message, ControlSignal):
                self._on_control(message)
            else:
                self._reply(
                    ErrorReply(
                        sender=SENDER,
                        original_message_id=message.message_id,
                        code=UNSUPPORTED_MESSAGE_CODE,
                        error_type="UnsupportedMessage",
                        description=f"Unsupported message type {type(message).__name__}",
                    )
                )
        except QHybridError as exc:
            logger.debug("Request %s failed: %s", message.message_id, exc)
            self._reply(ErrorReply.from_exception(exc, message.message_id, SENDER, job_id))
        except Exception as exc:
            logger.error("Request %s raised", message.message_id, exc_info=True)
            self._reply(
                ErrorReply(
                    sender=SENDER,
                    original_message_id=message.message_id,
                    code=QHybridError.code,
                    error_type=type(exc).__name__,
                    description=str(exc),
                    job_id=job_id,
                )
            )

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    def _on_submit(self, message: CircuitProgramSubmit) -> None:
        client = self.client
        job_id = client.submit_circuit(
            message.device,
            message.program,
            message.shots,
            message.backend_hint,
            priority=message.priority,
            timeout=message.timeout,
        )
        self._reply(
            Acknowledge(
                sender=SENDER,
                original_message_id=message.message_id,
                status=AckStatus.ACCEPTED,
                job_id=job_id,
            )
        )

        interval = self.config.snapshot_interval
        if interval > 0:
            aggregator = StreamAggregator(emit_interval=interval)
            total = message.shots

            def on_progress(job: QuantumJobContext, events: list[MeasurementEvent]) -> None:
                for stats in aggregator.add(events):
                    if stats.shot_count < total:
                        self._send_snapshot(job_id, stats, total, final=False)

            client.add_progress_callback(job_id, on_progress)

        def on_done(entity: SchedulableEntity) -> None:
            self._on_job_done(message, job_id, entity)

        client.add_done_callback(job_id, on_done)

    def _on_job_done(
        self, request: CircuitProgramSubmit, job_id: str, entity: SchedulableEntity
    ) -> None:
        if entity.state is EntityState.COMPLETED:
            stats = self.client.statistics(job_id)
            self._send_snapshot(job_id, stats, request.shots, final=True)
            return
        error = entity.error
        if not isinstance(error, QHybridError):
            error = JobCancelled(job_id) if entity.state is EntityState.CANCELLED else None
        if error is None:
            self._post(
                ErrorReply(
                    sender=SENDER,
                    original_message_id=request.message_id,
                    code=QHybridError.code,
                    error_type=type(entity.error).__name__,
                    description=str(entity.error),
                    job_id=job_id,
                )
            )
            return
        self._post(ErrorReply.from_exception(error, request.message_id, SENDER, job_id))

    def _on_measurement_request(self, message: MeasurementRequest) -> None:
        events: list[MeasurementEvent] = []
        self.client.read_results(message.job_id, events, message.max_events)
        final = (
            self.client.job_status(message.job_id).terminal
            and self.client.pending_events(message.job_id) == 0
        )
        self._reply(
            MeasurementBatch(
                sender=SENDER,
                job_id=message.job_id,
                events=tuple(events),
                final=final,
            )
        )

    def _on_control(self, message: ControlSignal) -> None:
        if message.kind is ControlKind.TIMEOUT:
            logger.info("Process gave up waiting on job %s", message.job_id)
        self.client.cancel(message.job_id)
        self._reply(
            Acknowledge(
                sender=SENDER,
                original_message_id=message.message_id,
                status=AckStatus.COMPLETED,
                job_id=message.job_id,
            )
        )

    # -------------------------------------------------------------------------
    # Replies
    # -------------------------------------------------------------------------

    def _send_snapshot(
        self, job_id: str, stats: MeasurementStatistics, total: int, *, final: bool
    ) -> None:
        self._post(
            StatisticsSnapshot(
                sender=SENDER,
                job_id=job_id,
                statistics=stats,
                completed_shots=stats.shot_count,
                total_shots=total,
                final=final,
            )
        )

    @property
    def backlog(self) -> int:
        """Replies waiting in the outbox for room on the channel."""
        with self._outbox_lock:
            return len(self._outbox)

    def flush(self) -> int:
        """
        Move queued replies onto the channel while it has room.

        Returns
        -------
        int
            Number of replies still queued.
        """
        with self._outbox_lock:
            while self._outbox:
                try:
                    self.endpoint.send(self._outbox[0], timeout=0)
                except ChannelFull:
                    break
                except ChannelClosed:
                    logger.warning(
                        "Dropped %d queued reply(s): channel closed", len(self._outbox)
                    )
                    self._outbox.clear()
                    break
                self._outbox.popleft()
            return len(self._outbox)

    def _post(self, message: Message) -> None:
        """Reply from a scheduler thread without waiting on the peer."""
        with self._outbox_lock:
            if not self._outbox:
                try:
                    self.endpoint.send(message, timeout=0)
                    return
                except ChannelFull:
                    pass
                except ChannelClosed as exc:
                    logger.warning("Dropped %s reply: %s", type(message).__name__, exc)
                    return
            if len(self._outbox) >= self.endpoint.channel.capacity:
                dropped = self._outbox.popleft()
                logger.warning(
                    "Outbox for %s full, dropped %s reply",
                    self.client.process_id,
                    type(dropped).__name__,
                )
            self._outbox.append(message)

    def _reply(self, message: Message) -> None:
        """Reply from the serving thread, waiting up to ``reply_timeout``."""
        if self.flush():
            with self._outbox_lock:
                self._outbox.append(message)
            return
        try:
            self.endpoint.send(message, timeout=self.config.reply_timeout)
        except (ChannelFull, ChannelClosed) as exc:
            logger.warning("Dropped %s reply: %s", type(message).__name__, exc)
