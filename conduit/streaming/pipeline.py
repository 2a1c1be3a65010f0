"""
Streaming pipeline orchestration.

Coordinates the flow: poll → fetch → transform → load → acknowledge

Each lane runs its own poll timer and four inter-stage channels. Every item
arriving on a channel is dispatched immediately as its own asyncio task, with
the blocking stage call running in a worker thread.
"""

import asyncio
import itertools
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from conduit.clients.interfaces import ObjectStore, QueueClient
from conduit.core.errors import (
    AckError,
    ObjectFetchError,
    QueueReceiveError,
    RecordError,
    TransformError,
    WriteError,
)
from conduit.core.models import Artifact, Notification, Payload, PipelineConfig
from conduit.observability.logger import get_logger
from conduit.observability.metrics import MetricsCollector
from conduit.streaming.acknowledger import Acknowledger
from conduit.streaming.fetcher import Fetcher
from conduit.streaming.sinks.object_sink import ObjectSink
from conduit.streaming.sinks.quarantine_sink import QuarantineSink
from conduit.streaming.sources.notification_poller import NotificationPoller
from conduit.streaming.transform import TransformFunc, TransformerAdapter

logger = get_logger(__name__)


@dataclass
class _PendingRecord:
    """Artifacts of one notification that are still being loaded."""

    notification: Notification
    remaining: int
    failed: bool = False


async def _wait_for_stop(stop: asyncio.Event, timeout: float) -> bool:
    """Wait up to ``timeout`` seconds; True if ``stop`` was set meanwhile."""
    try:
        await asyncio.wait_for(stop.wait(), timeout)
        return True
    except asyncio.TimeoutError:
        return False


class Lane:
    """
    One independent poll-and-drain loop.

    State: idle → running → stopping → stopped. All bookkeeping below is
    only touched from the event loop thread.
    """

    def __init__(
        self,
        index: int,
        config: PipelineConfig,
        poller: NotificationPoller,
        fetcher: Fetcher,
        transformer: TransformerAdapter,
        loader: ObjectSink,
        acknowledger: Acknowledger,
        metrics: Optional[MetricsCollector] = None,
        start_delay: float = 0.0,
    ):
        self.index = index
        self.config = config
        self.poller = poller
        self.fetcher = fetcher
        self.transformer = transformer
        self.loader = loader
        self.acknowledger = acknowledger
        self.metrics = metrics or MetricsCollector()
        self.start_delay = start_delay

        self.state = "idle"
        self.stats: Dict[str, int] = {
            "polls": 0,
            "notifications": 0,
            "payloads": 0,
            "artifacts": 0,
            "loaded": 0,
            "acknowledged": 0,
            "skipped": 0,
            "failed": 0,
        }

        self._in_flight: set[asyncio.Task] = set()
        self._pending: Dict[int, _PendingRecord] = {}
        self._tokens = itertools.count()
        self._semaphore: Optional[asyncio.Semaphore] = None

        # Channels are created in run() so they belong to the running loop
        self.notifications: Optional[asyncio.Queue] = None
        self.payloads: Optional[asyncio.Queue] = None
        self.artifacts: Optional[asyncio.Queue] = None
        self.acks: Optional[asyncio.Queue] = None

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def run(self, stop: asyncio.Event) -> None:
        """
        Run the lane until ``stop`` is set.

        Polls once immediately (after the start delay), then on every tick
        of a timer with period poll_frequency. Work already dispatched when
        ``stop`` is set is given shutdown_grace seconds to finish.
        """
        loop = asyncio.get_running_loop()
        self.notifications = asyncio.Queue()
        self.payloads = asyncio.Queue()
        self.artifacts = asyncio.Queue()
        self.acks = asyncio.Queue()
        if self.config.max_in_flight > 0:
            self._semaphore = asyncio.Semaphore(self.config.max_in_flight)

        if self.start_delay > 0:
            logger.info(f"Lane {self.index} starting in {self.start_delay:.3f}s")
            if await _wait_for_stop(stop, self.start_delay):
                self.state = "stopped"
                return
        elif stop.is_set():
            self.state = "stopped"
            return

        self.state = "running"
        logger.info(f"Lane {self.index} started", extra={"lane": self.index})

        interval = self.config.poll_interval
        handlers: Dict[asyncio.Queue, Callable[[Any], None]] = {
            self.notifications: self._on_notification,
            self.payloads: self._on_payload,
            self.artifacts: self._on_artifact,
            self.acks: self._on_ack,
        }

        self._dispatch(self._poll())
        next_tick = loop.time() + interval

        stop_waiter = asyncio.ensure_future(stop.wait())
        timer = asyncio.ensure_future(asyncio.sleep(interval))
        getters = {asyncio.ensure_future(queue.get()): queue for queue in handlers}

        try:
            while True:
                done, _ = await asyncio.wait(
                    {stop_waiter, timer, *getters},
                    return_when=asyncio.FIRST_COMPLETED,
                )

                if stop_waiter in done:
                    break

                if timer in done:
                    self._dispatch(self._poll())
                    now = loop.time()
                    next_tick += interval
                    # Drop ticks missed while the loop was busy
                    while next_tick <= now:
                        next_tick += interval
                    timer = asyncio.ensure_future(asyncio.sleep(next_tick - now))

                for getter in done & getters.keys():
                    queue = getters.pop(getter)
                    handlers[queue](getter.result())
                    getters[asyncio.ensure_future(queue.get())] = queue
        finally:
            for waiter in (stop_waiter, timer, *getters):
                waiter.cancel()
            self.state = "stopping"
            await self._drain()
            self.state = "stopped"
            logger.info(f"Lane {self.index} stopped", extra={"lane": self.index, **self.stats})

    # =======================
    # DISPATCH
    # =======================

    def _dispatch(self, unit: Awaitable[None]) -> None:
        task = asyncio.ensure_future(unit)
        self._in_flight.add(task)
        self.metrics.set_in_flight(self.index, len(self._in_flight))
        task.add_done_callback(self._unit_done)

    def _unit_done(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        self.metrics.set_in_flight(self.index, len(self._in_flight))
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            # Stage errors are handled inside the unit; anything here is a bug
            logger.error(f"Unhandled error in lane {self.index}: {error}", exc_info=error)

    async def _run_stage(self, func: Callable[..., Any], *args: Any) -> Any:
        if self._semaphore is None:
            return await asyncio.to_thread(func, *args)
        async with self._semaphore:
            return await asyncio.to_thread(func, *args)

    def _on_notification(self, notification: Notification) -> None:
        self._dispatch(self._fetch(notification))

    def _on_payload(self, payload: Payload) -> None:
        self._dispatch(self._transform(payload))

    def _on_artifact(self, item: tuple[int, Artifact]) -> None:
        token, artifact = item
        self._dispatch(self._load(token, artifact))

    def _on_ack(self, item: tuple[Notification, str]) -> None:
        notification, outcome = item
        self._dispatch(self._ack(notification, outcome))

    # =======================
    # STAGE UNITS
    # =======================

    async def _poll(self) -> None:
        try:
            notifications = await self._run_stage(self.poller.poll)
        except QueueReceiveError as e:
            self._record_failure(e)
            return

        self.stats["polls"] += 1
        self.stats["notifications"] += len(notifications)
        for notification in notifications:
            self.notifications.put_nowait(notification)

    async def _fetch(self, notification: Notification) -> None:
        try:
            payload = await self._run_stage(self.fetcher.fetch, notification)
        except ObjectFetchError as e:
            self._record_failure(e)
            return

        self.stats["payloads"] += 1
        self.payloads.put_nowait(payload)

    async def _transform(self, payload: Payload) -> None:
        try:
            artifacts = await self._run_stage(self.transformer.apply, payload)
        except TransformError as e:
            self._record_failure(e)
            return

        notification = payload.notification
        if not artifacts:
            if self.config.empty_result_policy == "ack":
                self.acks.put_nowait((notification, "empty"))
            else:
                self.stats["skipped"] += 1
                logger.info(
                    "Transform produced no artifacts, leaving message unacknowledged",
                    extra=notification.log_fields(),
                )
            return

        token = next(self._tokens)
        self._pending[token] = _PendingRecord(notification, len(artifacts))
        self.stats["artifacts"] += len(artifacts)
        for artifact in artifacts:
            self.artifacts.put_nowait((token, artifact))

    async def _load(self, token: int, artifact: Artifact) -> None:
        record = self._pending.get(token)
        loaded = False
        settled = False
        try:
            notification = await self._run_stage(self.loader.load, artifact)
            loaded = True
        except WriteError as e:
            self._record_failure(e)
        finally:
            # Every artifact settles its record, whatever the outcome
            if record is not None:
                settled = self._settle(token, record, loaded)

        if not loaded:
            return
        self.stats["loaded"] += 1
        # Acknowledge once, after the last artifact of the notification is written
        if settled and not record.failed:
            self.acks.put_nowait((notification, "loaded"))

    def _settle(self, token: int, record: _PendingRecord, loaded: bool) -> bool:
        if not loaded:
            record.failed = True
        record.remaining -= 1
        if record.remaining > 0:
            return False
        self._pending.pop(token, None)
        return True

    async def _ack(self, notification: Notification, outcome: str) -> None:
        try:
            await self._run_stage(self.acknowledger.ack, notification, outcome)
        except AckError as e:
            # Non-fatal: the message is redelivered and reprocessed
            self._record_failure(e)
            return

        self.stats["acknowledged"] += 1

    def _record_failure(self, error: RecordError) -> None:
        self.stats["failed"] += 1
        self.metrics.record_error(error, error.component)
        extra = {"lane": self.index, "component": error.component}
        if error.notification is not None:
            extra.update(error.notification.log_fields())
        logger.error(str(error), extra=extra, exc_info=error)

    async def _drain(self) -> None:
        if not self._in_flight:
            return

        grace = self.config.shutdown_grace
        logger.info(f"Lane {self.index} waiting up to {grace}s for {len(self._in_flight)} unit(s)")
        pending = set(self._in_flight)
        if grace > 0:
            _, pending = await asyncio.wait(pending, timeout=grace)

        if pending:
            logger.warning(
                f"Lane {self.index} abandoning {len(pending)} unit(s); "
                f"their messages will be redelivered"
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    def get_status(self) -> Dict[str, Any]:
        return {
            "lane": self.index,
            "state": self.state,
            "start_delay_seconds": round(self.start_delay, 3),
            "in_flight": self.in_flight,
            "pending_records": len(self._pending),
            **self.stats,
        }


class StreamingPipeline:
    """
    Main pipeline orchestrator.

    Handles the complete flow:
    1. Poll the queue for S3 event notifications
    2. Fetch each referenced object
    3. Run the caller-supplied transform
    4. Write artifacts to the egress bucket
    5. Delete the notification once its artifacts are written

    With concurrency > 1 the loop is replicated into lanes whose first polls
    are staggered across one poll interval.
    """

    def __init__(
        self,
        config: PipelineConfig,
        queue: QueueClient,
        store: ObjectStore,
        transform: Union[TransformFunc, TransformerAdapter],
        egress_store: Optional[ObjectStore] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        """
        Initialize pipeline.

        Args:
            config: Resolved, immutable configuration
            queue: Queue collaborator
            store: Object store holding source objects
            transform: Transform callable (or a ready TransformerAdapter)
            egress_store: Object store for artifacts (defaults to ``store``)
            metrics: Metrics collector
        """
        self.config = config
        self.metrics = metrics or MetricsCollector()
        egress_store = egress_store or store

        quarantine = None
        if config.quarantine_bucket:
            quarantine = QuarantineSink(egress_store, config.quarantine_bucket)

        self.poller = NotificationPoller(queue, config, self.metrics, quarantine)
        self.fetcher = Fetcher(store, self.metrics)
        if isinstance(transform, TransformerAdapter):
            self.transformer = transform
        else:
            self.transformer = TransformerAdapter(transform, self.metrics)
        self.loader = ObjectSink(egress_store, config.egress_bucket, self.metrics)
        self.acknowledger = Acknowledger(queue, self.metrics)

        self.lanes: List[Lane] = [
            Lane(
                index,
                config,
                self.poller,
                self.fetcher,
                self.transformer,
                self.loader,
                self.acknowledger,
                self.metrics,
                start_delay=delay,
            )
            for index, delay in enumerate(config.lane_start_delays())
        ]

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._stop_requested = False
        self._task: Optional[asyncio.Task] = None

        logger.info(
            f"Initialized StreamingPipeline (queue: {config.queue_url}, "
            f"egress: {config.egress_bucket}, lanes: {config.concurrency}, "
            f"poll: {config.poll_frequency}ms)"
        )

    @property
    def running(self) -> bool:
        return self._stop_event is not None

    async def run(self) -> None:
        """
        Run every lane until stop() is called.

        Raises:
            RuntimeError: If the pipeline is already running
        """
        if self.running:
            raise RuntimeError("Pipeline is already running")

        self._loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        if self._stop_requested:
            self._stop_event.set()

        logger.info(f"Starting streaming pipeline with {len(self.lanes)} lane(s)")
        try:
            await asyncio.gather(*(lane.run(self._stop_event) for lane in self.lanes))
        finally:
            self._stop_event = None
            self._stop_requested = False
            logger.info("Streaming pipeline stopped")

    def start(self) -> asyncio.Task:
        """
        Schedule run() on the running event loop.

        Returns:
            The task running the pipeline
        """
        if self._task is not None and not self._task.done():
            raise RuntimeError("Pipeline is already running")
        self._task = asyncio.ensure_future(self.run())
        return self._task

    def stop(self) -> None:
        """
        Signal every lane to stop polling and dispatching.

        Safe to call from signal handlers and other threads.
        """
        logger.info("Stop requested")
        self._stop_requested = True
        if self._stop_event is not None and self._loop is not None:
            self._loop.call_soon_threadsafe(self._stop_event.set)

    async def await_termination(self, timeout_seconds: Optional[float] = None) -> None:
        """Wait for a started pipeline to finish."""
        if self._task is None:
            raise RuntimeError("Pipeline is not running")
        await asyncio.wait_for(asyncio.shield(self._task), timeout_seconds)

    def get_status(self) -> Dict[str, Any]:
        """
        Get current status of the pipeline.

        Returns:
            Dictionary with pipeline and per-lane status
        """
        lanes = [lane.get_status() for lane in self.lanes]
        if self.running:
            status = "active"
        elif any(lane.state != "idle" for lane in self.lanes):
            status = "stopped"
        else:
            status = "not_started"

        return {
            "status": status,
            "queue_url": self.config.queue_url,
            "egress_bucket": self.config.egress_bucket,
            "concurrency": self.config.concurrency,
            "lanes": lanes,
        }


def create_streaming_pipeline(
    config: PipelineConfig,
    transform: Union[TransformFunc, TransformerAdapter],
    session: Any = None,
) -> StreamingPipeline:
    """
    Factory function to create a StreamingPipeline backed by SQS and S3.

    Args:
        config: Resolved configuration
        transform: Transform callable
        session: AwsSession (created from the environment if omitted)

    Returns:
        Configured StreamingPipeline instance

    Example:
        >>> config = resolve_config({"queue_url": url, "egress_bucket": "egress"})
        >>> pipeline = create_streaming_pipeline(config, prefix_transform)
        >>> asyncio.run(pipeline.run())
    """
    # Lazy import: boto3 is only needed when running against AWS
    from conduit.clients.aws import create_session

    session = session or create_session()
    return StreamingPipeline(
        config,
        queue=session.queue(config.queue_url),
        store=session.object_store(),
        transform=transform,
    )
