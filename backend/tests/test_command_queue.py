from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select, func

from airpurifier.exceptions import ValidationError, NotFoundError, InvalidTransitionError
from airpurifier.models.command import Command
from airpurifier.services import command_queue

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


async def _count(db):
    return (await db.execute(select(func.count(Command.id)))).scalar_one()


@pytest.mark.parametrize(
    "command,value,stored",
    [
        ("fan", "on", "on"),
        ("fan", "OFF", "off"),
        ("auto", "on", "ON"),
        ("auto", "Off", "OFF"),
        ("threshold", 450, "450"),
        ("threshold", "100", "100"),
        ("threshold", 2000.0, "2000"),
    ],
)
def test_validate_command_normalizes(command, value, stored):
    assert command_queue.validate_command(command, value) == (command, stored)


@pytest.mark.parametrize(
    "command,value",
    [
        ("fan", "maybe"),
        ("fan", True),
        ("auto", 1),
        ("threshold", 99),
        ("threshold", 2001),
        ("threshold", "abc"),
        ("threshold", 450.5),
        ("threshold", True),
        ("reboot", "now"),
    ],
)
def test_validate_command_rejects(command, value):
    with pytest.raises(ValidationError):
        command_queue.validate_command(command, value)


async def test_unknown_device_has_nothing_pending(db):
    assert await command_queue.drain_pending(db, "never-seen") == []


async def test_invalid_value_inserts_nothing(db):
    with pytest.raises(ValidationError):
        await command_queue.enqueue(db, "dev1", "fan", "maybe")
    assert await _count(db) == 0


async def test_drain_is_ordered_and_read_only(db):
    ids = []
    for i, (cmd, val) in enumerate([("fan", "on"), ("threshold", 500), ("auto", "OFF")]):
        row = await command_queue.enqueue(db, "dev1", cmd, val, now=T0 + timedelta(seconds=i))
        ids.append(row.id)
    await command_queue.enqueue(db, "dev2", "fan", "off", now=T0)

    first = await command_queue.drain_pending(db, "dev1")
    second = await command_queue.drain_pending(db, "dev1")
    assert [c.id for c in first] == ids
    assert [c.id for c in second] == ids
    assert all(c.status == "pending" for c in second)


async def test_same_timestamp_falls_back_to_id_order(db):
    a = await command_queue.enqueue(db, "dev1", "fan", "on", now=T0)
    b = await command_queue.enqueue(db, "dev1", "fan", "off", now=T0)
    assert [c.id for c in await command_queue.drain_pending(db, "dev1")] == [a.id, b.id]


async def test_completed_sets_processed_at_and_leaves_queue(db):
    row = await command_queue.enqueue(db, "dev1", "threshold", 450, now=T0)
    done = await command_queue.set_status(db, row.id, "completed", now=T0 + timedelta(seconds=30))

    assert done.status == "completed"
    assert done.processed_at is not None
    assert await command_queue.drain_pending(db, "dev1") == []


async def test_processing_does_not_set_processed_at(db):
    row = await command_queue.enqueue(db, "dev1", "fan", "on", now=T0)
    updated = await command_queue.set_status(db, row.id, "processing")
    assert updated.processed_at is None
    assert await command_queue.drain_pending(db, "dev1") == []


async def test_reopening_a_finished_command_is_rejected(db):
    row = await command_queue.enqueue(db, "dev1", "fan", "on", now=T0)
    await command_queue.set_status(db, row.id, "completed", now=T0)

    with pytest.raises(InvalidTransitionError) as exc:
        await command_queue.set_status(db, row.id, "pending")
    assert exc.value.current == "completed"

    still = await command_queue.set_status(db, row.id, "completed")
    assert still.status == "completed"


async def test_failed_cannot_become_completed(db):
    row = await command_queue.enqueue(db, "dev1", "fan", "on", now=T0)
    await command_queue.set_status(db, row.id, "failed")
    with pytest.raises(InvalidTransitionError):
        await command_queue.set_status(db, row.id, "completed")


async def test_racing_acks_finish_exactly_once(db, session_factory):
    row = await command_queue.enqueue(db, "dev1", "fan", "on", now=T0)
    assert (await command_queue.drain_pending(db, "dev1"))[0].status == "pending"

    async with session_factory() as other:
        await command_queue.set_status(other, row.id, "completed", now=T0)

    # db still holds the row as pending
    with pytest.raises(InvalidTransitionError) as exc:
        await command_queue.set_status(db, row.id, "failed")
    assert exc.value.current == "completed"

    async with session_factory() as fresh:
        stored = (await fresh.execute(select(Command).where(Command.id == row.id))).scalar_one()
    assert stored.status == "completed"


async def test_ack_after_concurrent_processing_still_completes(db, session_factory):
    row = await command_queue.enqueue(db, "dev1", "fan", "on", now=T0)

    async with session_factory() as other:
        await command_queue.set_status(other, row.id, "processing")

    done = await command_queue.set_status(db, row.id, "completed", now=T0)
    assert done.status == "completed"
    assert done.processed_at is not None


async def test_set_status_unknown_id(db):
    with pytest.raises(NotFoundError):
        await command_queue.set_status(db, 999999, "completed")


async def test_set_status_unknown_status(db):
    row = await command_queue.enqueue(db, "dev1", "fan", "on")
    with pytest.raises(ValidationError):
        await command_queue.set_status(db, row.id, "done")


async def test_list_commands_filters(db):
    a = await command_queue.enqueue(db, "dev1", "fan", "on", now=T0)
    await command_queue.enqueue(db, "dev1", "fan", "off", now=T0 + timedelta(seconds=1))
    await command_queue.set_status(db, a.id, "completed")

    completed = await command_queue.list_commands(db, device_id="dev1", status="completed")
    assert [c.id for c in completed] == [a.id]
    assert len(await command_queue.list_commands(db, device_id="dev1")) == 2
    with pytest.raises(ValidationError):
        await command_queue.list_commands(db, status="bogus")
