from __future__ import annotations

import threading
from pathlib import Path

import pytest

from conftest import write_ticket_file
from ticket_operator.core.exceptions import AlreadyClaimedError, ConflictError, NotFoundError
from ticket_operator.issuetypes import IssueTypeRegistry
from ticket_operator.tickets.store import TicketQueue


@pytest.fixture()
def queue(tmp_path: Path) -> TicketQueue:
    tickets = tmp_path / ".tickets"
    registry = IssueTypeRegistry.load_all(tickets)
    store = TicketQueue(tickets, priority_fn=registry.priority_index)
    store.ensure_dirs()
    return store


def test_priority_then_timestamp(queue: TicketQueue) -> None:
    write_ticket_file(queue.queue_dir, "20240101-0900-FEAT-web-a.md", ticket_id="FEAT-1")
    write_ticket_file(queue.queue_dir, "20240102-0900-FIX-web-b.md", ticket_id="FIX-1")
    write_ticket_file(queue.queue_dir, "20240101-0800-FIX-web-c.md", ticket_id="FIX-2")
    write_ticket_file(queue.queue_dir, "20231231-0800-TASK-web-d.md", ticket_id="TASK-1")
    assert [t.id for t in queue.list_by_priority()] == ["FIX-2", "FIX-1", "FEAT-1", "TASK-1"]
    assert queue.next_ticket().id == "FIX-2"
    assert queue.next_ticket(exclude_ids={"FIX-2"}).id == "FIX-1"


def test_next_ticket_skips_failed(queue: TicketQueue) -> None:
    write_ticket_file(
        queue.queue_dir, "20240101-0800-FIX-web-a.md", ticket_id="FIX-1", status="failed"
    )
    write_ticket_file(queue.queue_dir, "20240101-0900-TASK-web-b.md", ticket_id="TASK-1")
    assert queue.next_ticket().id == "TASK-1"


def test_unparseable_files_are_skipped(queue: TicketQueue) -> None:
    (queue.queue_dir / "README.md").write_text("notes", encoding="utf-8")
    write_ticket_file(queue.queue_dir, "20240101-0900-TASK-web-b.md", ticket_id="TASK-1")
    assert [t.id for t in queue.list_queue()] == ["TASK-1"]


def test_lifecycle_moves(queue: TicketQueue) -> None:
    write_ticket_file(queue.queue_dir, "20240101-0900-TASK-web-b.md", ticket_id="TASK-1")
    ticket = queue.require_ticket("TASK-1")

    claimed = queue.claim_ticket(ticket)
    assert claimed.filepath.parent == queue.in_progress_dir
    assert claimed.reload().status == "in-progress"

    returned = queue.return_to_queue(claimed, reason="Reviewer asked for changes")
    assert returned.filepath.parent == queue.queue_dir
    assert returned.reload().status == "queued"
    assert "- Reviewer asked for changes" in returned.filepath.read_text(encoding="utf-8")

    queue.claim_ticket(returned)
    done = queue.complete_ticket(returned)
    assert done.filepath.parent == queue.completed_dir
    assert queue.counts() == {"queued": 0, "in_progress": 0, "completed": 1}


def test_claim_twice_fails(queue: TicketQueue) -> None:
    write_ticket_file(queue.queue_dir, "20240101-0900-TASK-web-b.md", ticket_id="TASK-1")
    first = queue.require_ticket("TASK-1")
    second = queue.require_ticket("TASK-1")
    queue.claim_ticket(first)
    with pytest.raises(AlreadyClaimedError):
        queue.claim_ticket(second)


def test_claim_with_in_progress_duplicate_is_a_conflict(queue: TicketQueue) -> None:
    write_ticket_file(queue.queue_dir, "20240101-0900-TASK-web-b.md", ticket_id="TASK-1")
    write_ticket_file(
        queue.in_progress_dir,
        "20240101-0900-TASK-web-b.md",
        ticket_id="TASK-1",
        status="in-progress",
    )
    (ticket,) = queue.list_queue()

    with pytest.raises(ConflictError) as excinfo:
        queue.claim_ticket(ticket)

    assert not isinstance(excinfo.value, AlreadyClaimedError)
    assert (queue.queue_dir / ticket.filename).exists()


def test_concurrent_claims_have_one_winner(queue: TicketQueue) -> None:
    write_ticket_file(queue.queue_dir, "20240101-0900-TASK-web-b.md", ticket_id="TASK-1")
    contenders = [queue.require_ticket("TASK-1") for _ in range(8)]
    start = threading.Barrier(len(contenders), timeout=5)
    outcomes: list[str] = []
    lock = threading.Lock()

    def claim(ticket) -> None:
        start.wait()
        try:
            queue.claim_ticket(ticket)
            result = "won"
        except AlreadyClaimedError:
            result = "lost"
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=claim, args=(t,)) for t in contenders]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)
    assert sorted(outcomes) == ["lost"] * 7 + ["won"]
    assert len(list(queue.in_progress_dir.glob("*.md"))) == 1


def test_find_ticket_by_filename_fragment(queue: TicketQueue) -> None:
    write_ticket_file(queue.queue_dir, "20240101-0900-TASK-web-chore.md", ticket_id="TASK-1")
    assert queue.find_ticket("web-chore").id == "TASK-1"
    assert queue.find_ticket("nothing") is None
    with pytest.raises(NotFoundError):
        queue.require_ticket("nothing")


def test_move_to_and_set_status(queue: TicketQueue) -> None:
    write_ticket_file(queue.queue_dir, "20240101-0900-TASK-web-b.md", ticket_id="TASK-1")
    ticket = queue.require_ticket("TASK-1")
    with pytest.raises(ConflictError):
        queue.set_status(ticket, "awaiting")
    queue.move_to(ticket, "awaiting")
    assert ticket.filepath.parent == queue.in_progress_dir
    queue.set_status(ticket, "completing")
    assert ticket.reload().status == "completing"
    queue.move_to(ticket, "failed")
    assert ticket.filepath.parent == queue.queue_dir
    with pytest.raises(ValueError):
        queue.move_to(ticket, "archived")
