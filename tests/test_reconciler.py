import json
from datetime import datetime, timedelta, timezone

import pytest

from beeper.dispatcher import Dispatcher
from beeper.reconciler import Reconciler, normalize_record

from conftest import wait_until


def local_minute(moment):
    return moment.astimezone().replace(tzinfo=None).strftime("%Y-%m-%d %H:%M")


def test_legacy_time_field_is_migrated():
    job = normalize_record({"id": "x", "email": "a@b.com", "msg": "hi", "time": "2024-01-01T10:00:00Z"})

    assert job.scheduled_at == local_minute(datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc))
    assert "time" not in job.to_record()


def test_local_time_field_is_migrated():
    job = normalize_record({"id": "x", "localTime": "2099-01-01 10:00", "createdAt": "2024-01-01 09:00"})
    assert job.scheduled_at == "2099-01-01 10:00"
    assert "localTime" not in job.to_record()


def test_scheduled_at_wins_over_legacy_fields():
    job = normalize_record({"id": "x", "scheduledAt": "2099-05-05 05:05", "time": "2000-01-01T00:00:00Z"})
    assert job.scheduled_at == "2099-05-05 05:05"


def test_zone_marked_created_at_becomes_local():
    job = normalize_record({"id": "x", "scheduledAt": "2099-01-01 10:00", "createdAt": "2024-03-04T05:06:07.000Z"})
    assert job.created_at == local_minute(datetime(2024, 3, 4, 5, 6, tzinfo=timezone.utc))


def test_unusable_records_normalize_to_none():
    assert normalize_record({"id": "x", "scheduledAt": "someday"}) is None
    assert normalize_record({"id": "x"}) is None
    assert normalize_record({"scheduledAt": "2099-01-01 10:00"}) is None
    assert normalize_record(["not", "a", "record"]) is None


def write(pending_file, records):
    pending_file.write_text(json.dumps(records), encoding="utf-8")


def read(pending_file):
    return json.loads(pending_file.read_text(encoding="utf-8"))


@pytest.mark.asyncio
async def test_reconcile_drops_expired_and_arms_future(store, pending_file, notifier, clock):
    clock.jump_to(datetime(2030, 6, 1, 12, 0))
    write(pending_file, [
        {"id": "past", "email": "a@b.com", "msg": "old", "scheduledAt": "2030-06-01 11:59", "createdAt": ""},
        {"id": "now", "email": "a@b.com", "msg": "now", "scheduledAt": "2030-06-01 12:00", "createdAt": ""},
        {"id": "future", "email": "a@b.com", "msg": "new", "scheduledAt": "2030-06-01 12:30", "createdAt": ""},
        {"id": "broken", "email": "a@b.com", "msg": "?", "scheduledAt": "garbage", "createdAt": ""},
    ])
    dispatcher = Dispatcher(store, notifier, clock=clock)

    report = await Reconciler(store, dispatcher, clock=clock).run()

    assert report.armed == ["future"]
    assert sorted(report.expired) == ["now", "past"]
    assert report.invalid == ["broken"]
    assert report.rewritten is True
    assert [r["id"] for r in read(pending_file)] == ["future"]
    assert notifier.calls == []
    await dispatcher.shutdown()


@pytest.mark.asyncio
async def test_reconcile_leaves_canonical_file_untouched(store, pending_file, notifier, clock):
    records = [{"id": "a", "email": "a@b.com", "msg": "hi", "scheduledAt": "2099-01-01 10:00", "createdAt": "2024-01-01 09:00"}]
    write(pending_file, records)
    before = pending_file.stat().st_mtime_ns
    dispatcher = Dispatcher(store, notifier, clock=clock)

    report = await Reconciler(store, dispatcher, clock=clock).run()

    assert report.rewritten is False
    assert pending_file.stat().st_mtime_ns == before
    assert dispatcher.armed() == ["a"]
    await dispatcher.shutdown()


@pytest.mark.asyncio
async def test_reconcile_persists_migrated_shape(store, pending_file, notifier, clock):
    write(pending_file, [
        {"id": "a", "email": "a@b.com", "msg": "hi", "localTime": "2099-01-01 10:00", "createdAt": "2024-01-01 09:00"},
        {"id": "a", "email": "a@b.com", "msg": "dupe", "scheduledAt": "2099-01-01 11:00", "createdAt": ""},
    ])
    dispatcher = Dispatcher(store, notifier, clock=clock)

    await Reconciler(store, dispatcher, clock=clock).run()

    assert read(pending_file) == [
        {"id": "a", "email": "a@b.com", "msg": "hi", "scheduledAt": "2099-01-01 10:00", "createdAt": "2024-01-01 09:00"}
    ]
    await dispatcher.shutdown()


@pytest.mark.asyncio
async def test_restart_delivers_future_job(store, pending_file, notifier, clock):
    due = datetime(2099, 1, 1, 10, 0)
    write(pending_file, [{"id": "a", "email": "a@b.com", "msg": "hi", "scheduledAt": "2099-01-01 10:00", "createdAt": ""}])
    clock.jump_to(due - timedelta(milliseconds=100))
    dispatcher = Dispatcher(store, notifier, clock=clock)

    await Reconciler(store, dispatcher, clock=clock).run()

    await wait_until(lambda: not dispatcher.is_armed("a"))
    assert len(notifier.calls) == 1
    assert read(pending_file) == []
