import asyncio

from dropmanager.core.project_manager import ProjectManager
from dropmanager.core.schemas import ProcessUpdateRequest
from dropmanager.core.update_queue import UpdateQueue


def _request(text: str) -> ProcessUpdateRequest:
    return ProcessUpdateRequest(message_text=text, employee_id="emp-1", employee_display_name="Dana")


def test_submitted_update_is_processed_in_background():
    manager = ProjectManager()
    processed = []

    async def scenario():
        queue = UpdateQueue(manager)
        queue.on_processed = processed.append
        queue.start()
        ticket = queue.submit(_request("Finished the quarterly report."))
        assert ticket.status == "queued"
        await queue.join()
        await queue.stop()
        return queue.status(ticket.ticket_id)

    ticket = asyncio.run(scenario())

    assert ticket.status == "processed"
    assert ticket.completed_at is not None
    assert ticket.response.update_id in manager.updates
    assert [response.update_id for response in processed] == [ticket.response.update_id]


def test_full_queue_rejects_without_blocking():
    async def scenario():
        queue = UpdateQueue(ProjectManager(), maxsize=1)
        first = queue.submit(_request("Finished the quarterly report."))
        second = queue.submit(_request("Finished the slides."))
        return queue, first, second

    queue, first, second = asyncio.run(scenario())

    assert first.status == "queued"
    assert second.status == "rejected"
    assert "full" in second.error
    assert queue.pending == 1


def test_invalid_update_marks_ticket_failed():
    async def scenario():
        queue = UpdateQueue(ProjectManager())
        queue.start()
        ticket = queue.submit({"message_text": "Finished the report."})
        await queue.join()
        await queue.stop()
        return queue.status(ticket.ticket_id)

    ticket = asyncio.run(scenario())

    assert ticket.status == "failed"
    assert "employee_id" in ticket.error


def test_failing_callback_does_not_stop_worker():
    def explode(_response):
        raise RuntimeError("listener down")

    async def scenario():
        queue = UpdateQueue(ProjectManager())
        queue.on_processed = explode
        queue.start()
        first = queue.submit(_request("Finished the quarterly report."))
        second = queue.submit(_request("Finished the slides."))
        await queue.join()
        running = queue.running
        await queue.stop()
        return queue.status(first.ticket_id), queue.status(second.ticket_id), running

    first, second, running = asyncio.run(scenario())

    assert first.status == "processed"
    assert second.status == "processed"
    assert running


def test_finished_tickets_beyond_history_are_evicted():
    async def scenario():
        queue = UpdateQueue(ProjectManager(), history=1)
        queue.start()
        tickets = [queue.submit(_request(f"Finished report number {n}.")) for n in range(3)]
        await queue.join()
        await queue.stop()
        return queue, tickets

    queue, tickets = asyncio.run(scenario())

    assert queue.status(tickets[0].ticket_id) is None
    assert queue.status(tickets[1].ticket_id) is None
    assert queue.status(tickets[2].ticket_id).status == "processed"
