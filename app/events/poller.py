"""
Stream poller: the scheduler that feeds change-stream batches to the relay.

One checkpoint per shard. Each poll reads up to batch_size entries after the
checkpoint and hands them to the relay as one batch. A failed batch is retried
whole with backoff; once retries are exhausted the checkpoint stays where it
was, so the same batch is attempted again on the next poll. Checkpoints only
advance after the relay reports the whole batch published.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.events.relay import EventRelay
from core.exceptions import CheckpointExpiredError, TransientError
from infrastructure.streams.change_stream import ChangeStream, StreamPosition

logger = logging.getLogger(__name__)


class StreamPoller:
    """
    Polls every shard of a change stream and relays new entries.

    Thread-Safety: Uses asyncio; one background task per poller.
    """

    def __init__(
        self,
        stream: ChangeStream,
        relay: EventRelay,
        batch_size: int = 100,
        poll_interval: float = 1.0,
        max_batch_attempts: int = 3,
        start_position: StreamPosition = StreamPosition.LATEST,
        backoff_min: float = 0.5,
        backoff_max: float = 30.0,
    ):
        """
        Initialize the poller.

        Args:
            stream: Change stream to read.
            relay: Relay that publishes each batch.
            batch_size: Maximum entries per batch.
            poll_interval: Seconds between polls.
            max_batch_attempts: Attempts per batch within one poll.
            start_position: Where shards without a checkpoint start.
            backoff_min: First retry delay (seconds).
            backoff_max: Upper bound on a retry delay (seconds).
        """
        self._stream = stream
        self._relay = relay
        self._batch_size = batch_size
        self._poll_interval = poll_interval
        self._max_batch_attempts = max_batch_attempts
        self._start_position = StreamPosition(start_position)
        self._backoff_min = backoff_min
        self._backoff_max = backoff_max

        # shard id -> sequence token of the last published entry (None = trim horizon)
        self._checkpoints: Dict[str, Optional[str]] = {}
        self._task: Optional[asyncio.Task] = None
        self._running = False

        self._batches_relayed = 0
        self._batches_failed = 0
        self._entries_relayed = 0
        self._checkpoints_expired = 0

        self._initialize_checkpoints()

    def _initialize_checkpoints(self) -> None:
        for shard_id in self._stream.list_shards():
            if self._start_position == StreamPosition.LATEST:
                self._checkpoints[shard_id] = self._stream.latest_sequence(shard_id)
            else:
                self._checkpoints[shard_id] = None

    @property
    def running(self) -> bool:
        return self._running

    def checkpoint(self, shard_id: str) -> Optional[str]:
        return self._checkpoints.get(shard_id)

    async def start(self) -> None:
        """Start polling in the background."""
        if self._running:
            logger.warning("StreamPoller already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._run(), name="stream-poller")
        logger.info(
            f"StreamPoller started ({len(self._checkpoints)} shards, "
            f"every {self._poll_interval}s, from {self._start_position.value})"
        )

    async def stop(self) -> None:
        """Stop polling. An in-flight poll is cancelled; its checkpoints stay put."""
        if not self._running:
            return
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("StreamPoller stopped")

    async def _run(self) -> None:
        while self._running:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"StreamPoller error: {e}", exc_info=True)
            await asyncio.sleep(self._poll_interval)

    async def poll_once(self) -> int:
        """
        Poll every shard once.

        Returns:
            Number of entries relayed.
        """
        counts = await asyncio.gather(
            *(self.poll_shard(shard_id) for shard_id in self._stream.list_shards())
        )
        return sum(counts)

    async def poll_shard(self, shard_id: str) -> int:
        """
        Relay one batch from a shard.

        Returns:
            Number of entries relayed (0 if nothing new or the batch failed).
        """
        checkpoint = self._checkpoints.get(shard_id)
        try:
            batch = self._stream.get_records(
                shard_id, after_sequence=checkpoint, limit=self._batch_size
            )
        except CheckpointExpiredError as e:
            self._checkpoints_expired += 1
            logger.warning(
                f"Checkpoint for {shard_id} expired, restarting from trim horizon; "
                f"trimmed entries were not relayed: {e}"
            )
            self._checkpoints[shard_id] = None
            batch = self._stream.get_records(shard_id, limit=self._batch_size)

        if not batch:
            return 0

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_batch_attempts),
            wait=wait_exponential(
                multiplier=self._backoff_min, min=self._backoff_min, max=self._backoff_max
            ),
            retry=retry_if_exception_type(TransientError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    result = await self._relay.handle_batch(batch)
        except TransientError as e:
            self._batches_failed += 1
            logger.error(
                f"Batch of {len(batch)} from {shard_id} failed after "
                f"{self._max_batch_attempts} attempts, checkpoint left at {checkpoint}: {e}"
            )
            return 0

        self._checkpoints[shard_id] = batch[-1].sequence_number
        self._batches_relayed += 1
        self._entries_relayed += result.published
        logger.debug(
            f"Relayed {result.published} entries from {shard_id}, "
            f"checkpoint {batch[-1].sequence_number}"
        )
        return result.published

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "batches_relayed": self._batches_relayed,
            "batches_failed": self._batches_failed,
            "entries_relayed": self._entries_relayed,
            "checkpoints_expired": self._checkpoints_expired,
            "checkpoints": dict(self._checkpoints),
        }
