"""
Pulse (RabbitMQ) consumers for the bus based sources.

Each consumer owns one queue bound to a fixed set of routing keys. Messages
are handed over one at a time (prefetch 1) and acknowledged only once the
verify-then-trigger sequence has finished, whatever its outcome. A crash
before the ack leads to redelivery, and triggering the same job twice for one
push is tolerated.
"""

import asyncio
from typing import Callable
from urllib.parse import quote, urlparse, urlunparse

import aio_pika
from aio_pika.abc import AbstractIncomingMessage, AbstractRobustConnection
from sanic.log import logger

from deploy_proxy.config import Config
from deploy_proxy.events import WebhookEvent
from deploy_proxy.exceptions import DeployProxyError
from deploy_proxy.hgmo import Hgmo
from deploy_proxy.hgmo.models import HgChangegroup
from deploy_proxy.models import PulseBinding
from deploy_proxy.pipeline import Pipeline
from deploy_proxy.taskcluster import Taskcluster
from deploy_proxy.taskcluster.models import TaskclusterCompletion

# An event parser returns None for deliveries this consumer does not handle
Parser = Callable[[bytes, str], WebhookEvent | None]


def pulse_url(config: Config) -> str:
    """Build an AMQP URL from the pulse host and credentials."""
    parsed = urlparse(config.PULSE_HOST)
    netloc = (
        f"{quote(config.PULSE_USERNAME, safe='')}:"
        f"{quote(config.PULSE_PASSWORD, safe='')}@{parsed.netloc}"
    )
    return urlunparse(parsed._replace(netloc=netloc))


def pulse_queue_name(username: str, name: str) -> str:
    """Pulse only lets a user consume queues under ``queue/<username>/``."""
    return f"queue/{username}/{name}"


class PulseConsumer:
    def __init__(
        self,
        name: str,
        queue_name: str,
        bindings: list[PulseBinding],
        parser: Parser,
        pipeline: Pipeline,
    ):
        self.name = name
        self.queue_name = queue_name
        self.bindings = bindings
        self.parser = parser
        self.pipeline = pipeline
        self._channel = None
        self._queue = None
        self._consumer_tag = None

    async def start(self, connection: AbstractRobustConnection, username: str):
        self._channel = await connection.channel()
        await self._channel.set_qos(prefetch_count=1)

        if self.queue_name:
            self._queue = await self._channel.declare_queue(
                pulse_queue_name(username, self.queue_name), durable=True
            )
        else:
            self._queue = await self._channel.declare_queue(exclusive=True)

        for binding in self.bindings:
            exchange = await self._channel.get_exchange(
                binding.exchange_name, ensure=False
            )
            await self._queue.bind(exchange, routing_key=binding.routing_key)
            logger.info(
                "Bound queue %s to %s on %s",
                self._queue.name,
                binding.routing_key,
                binding.exchange_name,
            )

        self._consumer_tag = await self._queue.consume(self.on_message, no_ack=False)
        logger.info("Consumer %s started on queue %s", self.name, self._queue.name)

    async def handle_message(self, body: bytes, routing_key: str):
        """Parse, verify and trigger one delivery; failures are logged, never raised."""
        try:
            event = self.parser(body, routing_key)
            if event is None:
                logger.debug("Ignoring message with routing key %s", routing_key)
                return
            await self.pipeline.process(event)
        except DeployProxyError as e:
            logger.warning(
                "Dropping %s message with routing key %s: %s", self.name, routing_key, e
            )

    async def on_message(self, message: AbstractIncomingMessage):
        try:
            await self.handle_message(message.body, message.routing_key or "")
        except Exception as e:
            logger.exception(
                "Unexpected error handling %s message %s: %s",
                self.name,
                message.routing_key,
                e,
            )
        finally:
            # acknowledge *after* processing
            await message.ack()

    async def stop(self):
        if self._queue is not None and self._consumer_tag is not None:
            await self._queue.cancel(self._consumer_tag)
        if self._channel is not None:
            await self._channel.close()


def hgmo_consumer(hgmo: Hgmo, pipeline: Pipeline, config: Config) -> PulseConsumer:
    return PulseConsumer(
        name="hgmo",
        queue_name=config.HGMO_PULSE_QUEUE,
        bindings=hgmo.bindings(),
        parser=HgChangegroup.from_delivery,
        pipeline=pipeline,
    )


def taskcluster_consumer(
    taskcluster: Taskcluster, pipeline: Pipeline, config: Config
) -> PulseConsumer:
    def parse(body: bytes, routing_key: str) -> TaskclusterCompletion | None:
        # several consumers may share the exchange
        if not taskcluster.accepts(routing_key):
            return None
        return TaskclusterCompletion.from_delivery(body, routing_key)

    return PulseConsumer(
        name="taskcluster",
        queue_name=config.CLOUDOPS_DEPLOY_PULSE_QUEUE,
        bindings=taskcluster.bindings(),
        parser=parse,
        pipeline=pipeline,
    )


class Pulse:
    """Owns the pulse connection and the consumers running on it."""

    def __init__(self, config: Config, consumers: list[PulseConsumer]):
        self.config = config
        self.consumers = consumers
        self._connection = None

    async def start(self):
        try:
            self._connection = await asyncio.wait_for(
                aio_pika.connect_robust(pulse_url(self.config)), timeout=30
            )
        except Exception as exc:
            raise RuntimeError(
                f"Failed to connect to pulse at '{self.config.PULSE_HOST}': {exc}"
            ) from exc

        for consumer in self.consumers:
            await consumer.start(self._connection, self.config.PULSE_USERNAME)

    async def stop(self):
        for consumer in self.consumers:
            await consumer.stop()
        if self._connection is not None:
            await self._connection.close()
