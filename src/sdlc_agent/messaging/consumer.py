"""Work-queue consumer: one message at a time, ack on success, dead-letter otherwise."""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Protocol

from pika.exceptions import AMQPChannelError, AMQPConnectionError, ConnectionWrongStateError

from sdlc_agent.config import BrokerSettings
from sdlc_agent.messaging.broker import (
    BrokerConnectionError,
    ConnectionFactory,
    connect_with_retry,
    declare_topology,
    publish_json,
)
from sdlc_agent.messaging.messages import (
    MessageDecodeError,
    build_error_envelope,
    decode_work_request,
)
from sdlc_agent.orchestrator.failure_classifier import classify_failure
from sdlc_agent.orchestrator.models import PipelineResult, WorkRequest

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_TEXT = "development pipeline failed"


class DevelopmentProcessor(Protocol):
    """What the consumer needs from the development pipeline."""

    def process(self, request: WorkRequest) -> PipelineResult:
        """Run one request to a terminal outcome."""

    def recover_abandoned(self) -> list[str]:
        """Fail records left in flight by a previous consumer process."""


@dataclass(slots=True)
class ConsumerRunSummary:
    """Aggregate consumer counters for CLI reporting."""

    received: int = 0
    succeeded: int = 0
    failed: int = 0
    rejected: int = 0
    reconnects: int = 0


class QueueConsumer:
    """Pulls work requests from the durable queue and hands them to the pipeline."""

    def __init__(
        self,
        *,
        settings: BrokerSettings,
        processor: DevelopmentProcessor,
        connection_factory: ConnectionFactory,
        stop_event: threading.Event | None = None,
    ) -> None:
        self.settings = settings
        self.processor = processor
        self.connection_factory = connection_factory
        self.stop_event = stop_event or threading.Event()

    def stop(self) -> None:
        self.stop_event.set()

    def run(self, *, max_messages: int | None = None) -> ConsumerRunSummary:
        """Consume until stopped, ``max_messages`` handled, or the broker is lost."""

        summary = ConsumerRunSummary()
        recovered = self.processor.recover_abandoned()
        if recovered:
            logger.warning("Marked abandoned developments as failed count=%d", len(recovered))

        with self._signal_handlers():
            connection = self._connect()
            try:
                while True:
                    try:
                        self._consume(connection, summary=summary, max_messages=max_messages)
                        break
                    except (AMQPConnectionError, AMQPChannelError) as error:
                        if not self.settings.reconnect or self.stop_event.is_set():
                            raise BrokerConnectionError(
                                f"lost connection to RabbitMQ: {error}",
                            ) from error
                        summary.reconnects += 1
                        logger.warning(
                            "Broker connection lost, reconnecting attempt=%d error=%s",
                            summary.reconnects,
                            error,
                        )
                        _close_connection(connection)
                        connection = self._connect()
            finally:
                _close_connection(connection)

        logger.info(
            "Consumer stopped received=%d succeeded=%d failed=%d rejected=%d",
            summary.received,
            summary.succeeded,
            summary.failed,
            summary.rejected,
        )
        return summary

    def _connect(self) -> Any:
        return connect_with_retry(
            self.connection_factory,
            attempts=self.settings.connect_attempts,
            backoff_seconds=self.settings.connect_backoff_seconds,
        )

    def _consume(
        self,
        connection: Any,
        *,
        summary: ConsumerRunSummary,
        max_messages: int | None,
    ) -> None:
        channel = connection.channel()
        declare_topology(channel, self.settings)
        logger.info("Waiting for messages queue=%s", self.settings.queue)

        deliveries = channel.consume(
            self.settings.queue,
            inactivity_timeout=self.settings.inactivity_timeout_seconds,
        )
        for method, _properties, body in deliveries:
            if self._should_stop(summary=summary, max_messages=max_messages):
                break
            if method is None:
                continue
            self._handle_delivery(
                connection,
                channel,
                delivery_tag=method.delivery_tag,
                body=body,
                summary=summary,
            )
            if self._should_stop(summary=summary, max_messages=max_messages):
                break

        # Returns any prefetched but unhandled delivery to the queue.
        channel.cancel()

    def _should_stop(self, *, summary: ConsumerRunSummary, max_messages: int | None) -> bool:
        if self.stop_event.is_set():
            return True
        return max_messages is not None and summary.received >= max_messages

    def _handle_delivery(  # noqa: PLR0913
        self,
        connection: Any,
        channel: Any,
        *,
        delivery_tag: int,
        body: bytes,
        summary: ConsumerRunSummary,
    ) -> None:
        summary.received += 1
        try:
            request = decode_work_request(body)
        except MessageDecodeError as error:
            logger.error(
                "Rejected undecodable message size=%d class=%s error=%s",
                len(body),
                classify_failure(error).value,
                error,
            )
            summary.rejected += 1
            self._dead_letter(channel, delivery_tag=delivery_tag, body=body, error=str(error))
            return

        logger.info(
            "Received development request issue=%s project=%s size=%d",
            request.jira_issue_key,
            request.jira_project_key,
            len(body),
        )
        try:
            result = self._process_in_background(connection, request)
        except (AMQPConnectionError, AMQPChannelError):
            raise
        except Exception as error:  # noqa: BLE001
            logger.exception(
                "Development request crashed issue=%s",
                request.jira_issue_key,
            )
            summary.failed += 1
            self._dead_letter(
                channel,
                delivery_tag=delivery_tag,
                body=body,
                error=str(error) or type(error).__name__,
            )
            return

        if result.ok:
            channel.basic_ack(delivery_tag=delivery_tag)
            summary.succeeded += 1
            logger.info(
                "Processed development request issue=%s development_id=%s url=%s",
                request.jira_issue_key,
                result.development_id,
                result.pr_mr_url or "-",
            )
            return

        summary.failed += 1
        error_text = result.error or DEFAULT_FAILURE_TEXT
        logger.error(
            "Development request failed issue=%s development_id=%s step=%s error=%s",
            request.jira_issue_key,
            result.development_id,
            result.failed_step.value if result.failed_step else "-",
            error_text,
        )
        self._dead_letter(channel, delivery_tag=delivery_tag, body=body, error=error_text)

    def _process_in_background(self, connection: Any, request: WorkRequest) -> PipelineResult:
        """Run the pipeline on a worker thread while this thread services heartbeats.

        A blocking connection only answers broker heartbeats while it is
        pumped, and one request can run far longer than the heartbeat window.
        """

        with ThreadPoolExecutor(max_workers=1, thread_name_prefix="sdlc-pipeline") as executor:
            future = executor.submit(self.processor.process, request)
            while not future.done():
                connection.process_data_events(time_limit=self.settings.inactivity_timeout_seconds)
            return future.result()

    def _dead_letter(self, channel: Any, *, delivery_tag: int, body: bytes, error: str) -> None:
        publish_json(
            channel,
            exchange="",
            routing_key=self.settings.error_queue,
            body=build_error_envelope(body, error),
        )
        channel.basic_nack(delivery_tag=delivery_tag, requeue=False)

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            logger.info("Shutdown requested signal=%s, finishing in-flight message", name)
            self.stop_event.set()

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            yield
            return
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)


def _close_connection(connection: Any) -> None:
    if not connection.is_open:
        return
    try:
        connection.close()
    except (ConnectionWrongStateError, AMQPConnectionError) as error:
        logger.debug("Broker connection already closed: %s", error)
