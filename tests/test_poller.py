import asyncio
import uuid
from datetime import timedelta

import pytest
from sqlalchemy.exc import SQLAlchemyError

from medremind.medications.services import MedicationService
from medremind.notifications.dispatcher import NotificationDispatcher
from medremind.scheduling.poller import DosePoller, PollerRegistry
from medremind.store.adherence import AdherenceStore
from medremind.users.directory import UserDirectory


async def link_caretaker(session_factory, patient, caretaker):
    async with session_factory() as db:
        await UserDirectory(db).add_caretaker(patient, caretaker.email)


async def notifications_for(session_factory, user_id, type_=None):
    async with session_factory() as db:
        notes = await NotificationDispatcher(db).list(user_id)
    return [n for n in notes if type_ is None or n.type == type_]


async def wait_for(predicate, timeout=5.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.02)


@pytest.fixture
async def patient_with_caretaker(session_factory, make_user):
    patient = await make_user(email="pat@example.com", name="Pat")
    caretaker = await make_user(email="care@example.com", name="Casey", role="caretaker")
    await link_caretaker(session_factory, patient, caretaker)
    return patient, caretaker


# ===================== REMINDERS ======================

@pytest.mark.anyio
async def test_due_dose_reminds_once(session_factory, make_user, make_medication, clock):
    user = await make_user()
    await make_medication(user)
    poller = DosePoller(user.id, session_factory, clock)

    report = await poller.tick()
    assert report.evaluated == 1
    assert report.logs_created == 1
    assert report.reminders == 1

    clock.advance(minutes=2)
    again = await poller.tick()
    assert again.logs_created == 0
    assert again.reminders == 0

    reminders = await notifications_for(session_factory, user.id, "reminder")
    assert [n.message for n in reminders] == ["Time to take Metformin - 500 mg"]
    async with session_factory() as db:
        logs = await AdherenceStore(db).list_logs(user.id)
    assert [log.status for log in logs] == ["missed"]


@pytest.mark.anyio
async def test_gap_past_due_window_records_missed_without_reminder(session_factory, make_user, make_medication, clock):
    user = await make_user()
    await make_medication(user)
    clock.set(9, 20)

    report = await DosePoller(user.id, session_factory, clock).tick()
    assert report.logs_created == 1
    assert report.reminders == 0
    assert await notifications_for(session_factory, user.id, "reminder") == []


@pytest.mark.anyio
async def test_notifications_off_still_records_logs(session_factory, make_user, make_medication, clock):
    user = await make_user()
    await make_medication(user, quantity_remaining=1)
    async with session_factory() as db:
        await UserDirectory(db).update_settings(user.id, notifications=False)

    report = await DosePoller(user.id, session_factory, clock).tick()
    assert report.logs_created == 1
    assert report.reminders == 0
    assert report.low_stock == 0
    assert await notifications_for(session_factory, user.id) == []


@pytest.mark.anyio
async def test_low_stock_repeats_every_tick(session_factory, make_user, make_medication, clock):
    user = await make_user()
    await make_medication(user, times=("21:00",), quantity_remaining=2, quantity_threshold=5)
    poller = DosePoller(user.id, session_factory, clock)

    for _ in range(2):
        report = await poller.tick()
        assert report.low_stock == 1
        clock.advance(minutes=5)

    low = await notifications_for(session_factory, user.id, "low-stock")
    assert len(low) == 2
    assert low[0].message == "You have only 2 Metformin left. Time to refill!"


@pytest.mark.anyio
async def test_unknown_user_tick_is_empty(session_factory, clock):
    report = await DosePoller(uuid.uuid4(), session_factory, clock).tick()
    assert report.evaluated == 0


# ===================== ESCALATION ======================

@pytest.mark.anyio
async def test_missed_dose_escalates_to_caretaker_once(session_factory, make_medication, clock, patient_with_caretaker):
    patient, caretaker = patient_with_caretaker
    await make_medication(patient)
    poller = DosePoller(patient.id, session_factory, clock)

    report = await poller.tick()
    assert report.escalations_queued == 1

    clock.advance(minutes=59)
    assert (await poller.tick()).caretaker_alerts == 0

    clock.advance(minutes=2)
    assert (await poller.tick()).caretaker_alerts == 1
    assert (await poller.tick()).caretaker_alerts == 0

    alerts = await notifications_for(session_factory, caretaker.id, "missed")
    assert [n.message for n in alerts] == ["Pat missed their Metformin dose at 09:00"]
    assert await notifications_for(session_factory, patient.id, "missed") == []


@pytest.mark.anyio
async def test_taken_dose_is_not_escalated(session_factory, make_medication, clock, patient_with_caretaker):
    patient, caretaker = patient_with_caretaker
    med = await make_medication(patient)
    poller = DosePoller(patient.id, session_factory, clock)
    await poller.tick()

    clock.advance(minutes=20)
    async with session_factory() as db:
        await MedicationService(db, clock).mark_dose_taken(patient.id, med.id, med.times[0].id)

    clock.advance(minutes=45)
    assert (await poller.tick()).caretaker_alerts == 0
    assert await notifications_for(session_factory, caretaker.id, "missed") == []
    async with session_factory() as db:
        assert await AdherenceStore(db).pending_escalations(patient.id) == []


@pytest.mark.anyio
async def test_deleted_medication_is_not_escalated(session_factory, make_medication, clock, patient_with_caretaker):
    patient, caretaker = patient_with_caretaker
    med = await make_medication(patient)
    poller = DosePoller(patient.id, session_factory, clock)
    await poller.tick()

    async with session_factory() as db:
        await MedicationService(db, clock).delete_medication(patient.id, med.id)

    clock.advance(minutes=61)
    report = await poller.tick()
    assert report.caretaker_alerts == 0
    assert report.failures == 0
    assert await notifications_for(session_factory, caretaker.id, "missed") == []


@pytest.mark.anyio
async def test_caretaker_alerts_off_skips_escalation(session_factory, make_medication, clock, patient_with_caretaker):
    patient, caretaker = patient_with_caretaker
    await make_medication(patient)
    async with session_factory() as db:
        await UserDirectory(db).update_settings(patient.id, caretaker_alerts=False)

    report = await DosePoller(patient.id, session_factory, clock).tick()
    assert report.reminders == 1
    assert report.escalations_queued == 0


@pytest.mark.anyio
async def test_caretaker_alerts_turned_off_while_waiting(session_factory, make_medication, clock, patient_with_caretaker):
    patient, caretaker = patient_with_caretaker
    await make_medication(patient)
    poller = DosePoller(patient.id, session_factory, clock)
    await poller.tick()

    async with session_factory() as db:
        await UserDirectory(db).update_settings(patient.id, caretaker_alerts=False)

    clock.advance(minutes=61)
    assert (await poller.tick()).caretaker_alerts == 0
    async with session_factory() as db:
        assert await AdherenceStore(db).pending_escalations(patient.id) == []


@pytest.mark.anyio
async def test_no_caretakers_no_escalation(session_factory, make_user, make_medication, clock):
    user = await make_user()
    await make_medication(user)
    report = await DosePoller(user.id, session_factory, clock).tick()
    assert report.escalations_queued == 0


# ===================== CONCURRENCY / FAILURES ======================

@pytest.mark.anyio
async def test_tick_skipped_while_previous_runs(session_factory, make_user, clock):
    user = await make_user()
    poller = DosePoller(user.id, session_factory, clock)

    async with poller._lock:
        assert await poller.tick() is None
    assert await poller.tick() is not None


@pytest.mark.anyio
async def test_store_failure_is_retried_next_tick(session_factory, make_user, make_medication, clock, monkeypatch):
    user = await make_user()
    await make_medication(user)
    poller = DosePoller(user.id, session_factory, clock)

    async def broken_record_log(self, intent):
        raise SQLAlchemyError("disk full")

    with monkeypatch.context() as patch:
        patch.setattr(AdherenceStore, "record_log", broken_record_log)
        report = await poller.tick()
    assert report.failures == 1
    assert report.logs_created == 0

    clock.advance(minutes=1)
    report = await poller.tick()
    assert report.failures == 0
    assert report.logs_created == 1
    assert report.reminders == 1


# ===================== LIFECYCLE ======================

@pytest.mark.anyio
async def test_escalation_timer_fires_while_running(session_factory, make_medication, clock, patient_with_caretaker):
    patient, caretaker = patient_with_caretaker
    await make_medication(patient)
    poller = DosePoller(
        patient.id,
        session_factory,
        clock,
        escalation_delay=timedelta(seconds=0.3),
    )

    poller.start()
    try:
        await wait_for(lambda: poller.pending_timers == 1)
        clock.advance(minutes=1)
        await wait_for(lambda: poller.pending_timers == 0)
    finally:
        await poller.stop()

    alerts = await notifications_for(session_factory, caretaker.id, "missed")
    assert len(alerts) == 1


@pytest.mark.anyio
async def test_stop_cancels_loop_and_timers(session_factory, make_medication, clock, patient_with_caretaker):
    patient, _ = patient_with_caretaker
    await make_medication(patient)
    poller = DosePoller(patient.id, session_factory, clock)

    poller.start()
    await wait_for(lambda: poller.pending_timers == 1)
    assert poller.running

    await poller.stop()
    assert not poller.running
    assert poller.pending_timers == 0

    # the task stays queued and is swept once it is overdue
    async with session_factory() as db:
        assert len(await AdherenceStore(db).pending_escalations(patient.id)) == 1


@pytest.mark.anyio
async def test_start_rearms_pending_escalations(session_factory, make_medication, clock, patient_with_caretaker):
    patient, _ = patient_with_caretaker
    med = await make_medication(patient, times=("21:00",))
    async with session_factory() as db:
        await AdherenceStore(db).schedule_escalation(
            patient.id, med.id, clock.now() - timedelta(minutes=10), clock.now() + timedelta(minutes=50)
        )

    poller = DosePoller(patient.id, session_factory, clock)
    poller.start()
    try:
        await wait_for(lambda: poller.pending_timers == 1)
    finally:
        await poller.stop()


@pytest.mark.anyio
async def test_registry_keeps_one_poller_per_user(session_factory, make_user, clock):
    user = await make_user()
    registry = PollerRegistry(session_factory, clock)

    first = await registry.start(user.id)
    assert user.id in registry
    assert first.running

    second = await registry.start(user.id)
    assert registry.get(user.id) is second
    assert not first.running

    await registry.stop_all()
    assert user.id not in registry
    assert not second.running


@pytest.mark.anyio
async def test_overlapping_logins_leave_no_stray_poller(session_factory, make_user, clock):
    user = await make_user()
    registry = PollerRegistry(session_factory, clock)

    first = await registry.start(user.id)
    second, third = await asyncio.gather(registry.start(user.id), registry.start(user.id))

    assert registry.get(user.id) in (second, third)
    running = [p for p in (first, second, third) if p.running]
    assert running == [registry.get(user.id)]

    await registry.stop_all()
    assert not any(p.running for p in (first, second, third))
