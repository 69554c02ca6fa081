"""AMQP connection and topology helpers."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

import pika
from pika.adapters.blocking_connection import BlockingChannel
from pika.exceptions import AMQPConnectionError

from sdlc_agent.config import BrokerSettings
from sdlc_agent.messaging.messages import encode_work_request
from sdlc_agent.orchestrator.models import WorkRequest

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[], Any]

PERSISTENT_DELIVERY_MODE = 2
JSON_CONTENT_TYPE = "application/json"


class BrokerConnectionError(RuntimeError):
    """Broker stayed unreachable after all connection attempts."""


def pika_connection_factory(settings: BrokerSettings) -> ConnectionFactory:
    """Return a factory opening blocking connections to ``settings.url``."""

    def _connect() -> pika.BlockingConnection:
        parameters = pika.URLParameters(settings.url)
        parameters.heartbeat = settings.heartbeat_seconds
        return pika.BlockingConnection(parameters)

    return _connect


def connect_with_retry(
    factory: ConnectionFactory,
    *,
    attempts: int,
    backoff_seconds: float,
    sleep: Callable[[float], None] = time.sleep,
) -> Any:
    """Open a connection, waiting ``backoff_seconds * n`` after the n-th failure."""

    last_error: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            connection = factory()
        except AMQPConnectionError as error:
            last_error = error
            logger.warning(
                "Broker connection failed attempt=%d/%d error=%s",
                attempt,
                attempts,
                _describe(error),
            )
            if attempt < attempts:
                sleep(backoff_seconds * attempt)
            continue
        logger.info("Connected to broker attempt=%d", attempt)
        return connection

    raise BrokerConnectionError(
        f"failed to connect to RabbitMQ after {attempts} attempts: {_describe(last_error)}",
    )


def declare_topology(channel: BlockingChannel, settings: BrokerSettings) -> None:
    """Declare the exchange, work and error queues and limit prefetch to one."""

    channel.exchange_declare(
        exchange=settings.exchange,
        exchange_type="topic",
        durable=True,
    )
    channel.queue_declare(queue=settings.queue, durable=True)
    channel.queue_declare(queue=settings.error_queue, durable=True)
    channel.queue_bind(
        queue=settings.queue,
        exchange=settings.exchange,
        routing_key=settings.routing_pattern,
    )
    channel.basic_qos(prefetch_count=1)
    logger.info(
        "Declared topology exchange=%s queue=%s error_queue=%s pattern=%s",
        settings.exchange,
        settings.queue,
        settings.error_queue,
        settings.routing_pattern,
    )


def publish_json(
    channel: BlockingChannel,
    *,
    exchange: str,
    routing_key: str,
    body: bytes,
) -> None:
    channel.basic_publish(
        exchange=exchange,
        routing_key=routing_key,
        body=body,
        properties=pika.BasicProperties(
            content_type=JSON_CONTENT_TYPE,
            delivery_mode=PERSISTENT_DELIVERY_MODE,
        ),
    )


def work_routing_key(settings: BrokerSettings, project_key: str) -> str:
    return f"{settings.routing_key_prefix}.{project_key}"


def _describe(error: BaseException | None) -> str:
    if error is None:
        return "unknown error"
    return str(error) or type(error).__name__


def publish_work_request(
    channel: BlockingChannel,
    settings: BrokerSettings,
    request: WorkRequest,
) -> str:
    """Publish ``request`` to the work exchange; return the routing key used."""

    routing_key = work_routing_key(settings, request.jira_project_key)
    publish_json(
        channel,
        exchange=settings.exchange,
        routing_key=routing_key,
        body=encode_work_request(request),
    )
    logger.info(
        "Published development request issue=%s routing_key=%s",
        request.jira_issue_key,
        routing_key,
    )
    return routing_key
