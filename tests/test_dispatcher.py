import asyncio
import logging

from dropmanager.agents.dispatcher import AgentDispatcher
from dropmanager.agents.handlers import ProjectHandler, TaskHandler
from dropmanager.core.project_manager import ProjectManager
from dropmanager.core.schemas import AgentContext, AgentMessage, AgentResult


def _context() -> AgentContext:
    return AgentContext(user_id="u1", conversation_id="c1")


class EchoHandler:
    def __init__(self, name: str, target: str) -> None:
        self.name = name
        self.target = target

    def can_handle(self, payload, context):
        return isinstance(payload, str)

    async def handle(self, payload, context):
        return AgentResult(
            outbound=[AgentMessage(from_agent=self.name, to_agent=self.target, type="NOTIFICATION", context=context)],
            logs=[f"[{self.name}] echoed"],
        )


class PickyHandler:
    name = "picky"

    def can_handle(self, payload, context):
        raise ValueError("cannot decide")

    async def handle(self, payload, context):
        raise AssertionError("should never run")


class FailingHandler:
    name = "failing"

    def can_handle(self, payload, context):
        return True

    async def handle(self, payload, context):
        raise RuntimeError("handler exploded")


def test_two_handlers_each_contribute_a_message():
    dispatcher = AgentDispatcher([EchoHandler("a", "x"), EchoHandler("b", "y")])

    result = asyncio.run(dispatcher.dispatch("hello", _context()))

    assert len(result.outbound) == 2
    ids = [message.id for message in result.outbound]
    assert all(ids) and len(set(ids)) == 2
    assert all(message.timestamp for message in result.outbound)
    assert "[orchestrator] dispatch -> a" in result.logs
    assert "[b] echoed" in result.logs


def test_can_handle_error_skips_handler():
    dispatcher = AgentDispatcher([PickyHandler(), EchoHandler("a", "x")])

    result = asyncio.run(dispatcher.dispatch("hello", _context()))

    assert [message.from_agent for message in result.outbound] == ["a"]
    assert any("error deciding for picky" in line for line in result.logs)


def test_failing_handler_does_not_sink_the_batch(caplog):
    dispatcher = AgentDispatcher([FailingHandler(), EchoHandler("a", "x")])

    with caplog.at_level(logging.ERROR):
        result = asyncio.run(dispatcher.dispatch("hello", _context()))

    assert [message.from_agent for message in result.outbound] == ["a"]
    assert "handler exploded" in caplog.text


def test_nothing_selected_yields_empty_result():
    result = asyncio.run(AgentDispatcher([EchoHandler("a", "x")]).dispatch({"not": "text"}, _context()))

    assert result.outbound == []


def test_task_and_project_handlers_chain_through_relay():
    manager = ProjectManager()
    dispatcher = AgentDispatcher([TaskHandler(), ProjectHandler(manager)])

    async def scenario():
        first = await dispatcher.dispatch("Finished triage of the maintenance backlog.", _context())
        second = await dispatcher.relay(first.outbound)
        return first, second

    first, second = asyncio.run(scenario())

    targets = sorted(message.to_agent for message in first.outbound)
    assert targets == ["project", "question"]
    notification = second.outbound[0]
    assert notification.type == "NOTIFICATION"
    assert notification.payload["assigned"] == [
        {"title": "triage of the maintenance backlog", "project_id": "maintenance"}
    ]
    assert "u1" not in manager.projects["maintenance"].assigned_employees
