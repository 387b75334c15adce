"""Message bus interface and the in-process implementation."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from pydantic import ValidationError
from service_commons.logging import get_logger

from marketplace_protocol.messages import correlation_of, parse_message, to_wire

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from pydantic import BaseModel

    from marketplace_protocol.messages import Message

    Handler = Callable[[Message], Awaitable[None]]

logger = get_logger(__name__)


class MessageBus(Protocol):
    """Topic-based publish/subscribe transport."""

    async def publish(self, topic: str, message: BaseModel) -> None: ...

    def subscribe(self, topic: str, handler: Handler, agent_name: str | None = None) -> None: ...


@dataclass(frozen=True)
class Subscription:
    """A handler registered on a topic."""

    topic: str
    handler: Handler
    agent_name: str | None


@dataclass(frozen=True)
class PublishedMessage:
    """A message as it appeared on the wire."""

    topic: str
    payload: dict[str, Any]


class InMemoryMessageBus:
    """
    Single-process bus that models the wire boundary.

    Messages are serialized to JSON-compatible dicts on publish and
    re-validated before dispatch, so handlers only ever see typed messages.
    Targeted messages (``to`` set) reach only subscribers registered under
    that agent name. A failing handler is logged and never affects the
    publisher or the remaining subscribers.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, list[Subscription]] = defaultdict(list)
        self.published: list[PublishedMessage] = []

    def subscribe(self, topic: str, handler: Handler, agent_name: str | None = None) -> None:
        """Register a handler for a topic."""
        self._subscriptions[topic].append(
            Subscription(topic=topic, handler=handler, agent_name=agent_name)
        )

    async def publish(self, topic: str, message: BaseModel) -> None:
        """Serialize and deliver a typed message."""
        await self.publish_raw(topic, to_wire(message))

    async def publish_raw(self, topic: str, payload: dict[str, Any]) -> None:
        """Deliver an untyped wire payload, validating it first."""
        self.published.append(PublishedMessage(topic=topic, payload=payload))
        await self._dispatch(topic, payload)

    async def redeliver(self, index: int) -> None:
        """Replay a previously published message (at-least-once delivery)."""
        record = self.published[index]
        await self._dispatch(record.topic, record.payload)

    def messages_on(self, topic: str) -> list[dict[str, Any]]:
        return [record.payload for record in self.published if record.topic == topic]

    async def _dispatch(self, topic: str, payload: dict[str, Any]) -> None:
        try:
            message = parse_message(payload)
        except ValidationError as exc:
            logger.warning(
                "Dropping invalid message",
                extra={"topic": topic, "error_count": exc.error_count()},
            )
            return

        for subscription in list(self._subscriptions.get(topic, [])):
            if message.to is not None and subscription.agent_name != message.to:
                continue
            try:
                await subscription.handler(message)
            except Exception:
                logger.exception(
                    "Message handler failed",
                    extra={
                        "topic": topic,
                        "message_type": message.type,
                        "agent": subscription.agent_name,
                        **correlation_of(message),
                    },
                )
