from __future__ import annotations

import asyncio
import itertools
import logging
import uuid
from typing import Any, Protocol, Sequence

from dropmanager.core.schemas import AgentContext, AgentMessage, AgentResult
from dropmanager.utils.time_util import utcnow

logger = logging.getLogger(__name__)

_message_counter = itertools.count(1)


def next_message_id() -> str:
    return f"msg-{next(_message_counter)}-{uuid.uuid4().hex[:8]}"


class AgentHandler(Protocol):
    name: str

    def can_handle(self, payload: Any, context: AgentContext) -> bool:
        ...

    async def handle(self, payload: Any, context: AgentContext) -> AgentResult:
        ...


class AgentDispatcher:
    """Fans one input out to every registered handler that accepts it."""

    name = "orchestrator"

    def __init__(self, handlers: Sequence[AgentHandler] = ()) -> None:
        self._handlers: list[AgentHandler] = list(handlers)

    def register(self, handler: AgentHandler) -> None:
        self._handlers.append(handler)

    @property
    def handlers(self) -> list[AgentHandler]:
        return list(self._handlers)

    async def dispatch(self, payload: Any, context: AgentContext) -> AgentResult:
        logs: list[str] = []
        selected: list[AgentHandler] = []
        for handler in self._handlers:
            try:
                accepted = handler.can_handle(payload, context)
            except Exception as exc:
                logger.warning("Handler %s failed deciding whether to handle input: %s", handler.name, exc)
                logs.append(f"[orchestrator] error deciding for {handler.name}: {exc}")
                continue
            if accepted:
                logs.append(f"[orchestrator] dispatch -> {handler.name}")
                selected.append(handler)

        results = await asyncio.gather(
            *(handler.handle(payload, context) for handler in selected),
            return_exceptions=True,
        )

        outbound: list[AgentMessage] = []
        for handler, result in zip(selected, results):
            if isinstance(result, BaseException):
                logger.error("Handler %s failed: %s", handler.name, result)
                logs.append(f"[orchestrator] {handler.name} failed: {result}")
                continue
            outbound.extend(result.outbound)
            logs.extend(result.logs)

        for message in outbound:
            if not message.id:
                message.id = next_message_id()
            if not message.timestamp:
                message.timestamp = utcnow().isoformat()
        return AgentResult(outbound=outbound, logs=logs)

    async def relay(self, messages: Sequence[AgentMessage]) -> AgentResult:
        """Deliver each message's payload to the handler it is addressed to."""
        by_name = {handler.name: handler for handler in self._handlers}
        outbound: list[AgentMessage] = []
        logs: list[str] = []
        for message in messages:
            handler = by_name.get(message.to_agent)
            if handler is None:
                continue
            result = await AgentDispatcher([handler]).dispatch(message.payload, message.context)
            outbound.extend(result.outbound)
            logs.extend(result.logs)
        return AgentResult(outbound=outbound, logs=logs)
