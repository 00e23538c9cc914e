from datetime import datetime, timedelta

import pytest

from medremind.scheduling.evaluator import LogIntent
from medremind.store.adherence import AdherenceStore


def intent_for(med, scheduled, reminder=True):
    return LogIntent(
        medication_id=med.id,
        user_id=med.user_id,
        dose_time_id=med.times[0].id,
        scheduled_time=scheduled,
        reminder=reminder,
    )


@pytest.mark.anyio
async def test_record_log_is_idempotent(session_factory, make_user, make_medication):
    user = await make_user()
    med = await make_medication(user)
    scheduled = datetime(2025, 3, 10, 9, 0)

    async with session_factory() as db:
        store = AdherenceStore(db)
        first, created = await store.record_log(intent_for(med, scheduled))
        assert created
        second, created_again = await store.record_log(intent_for(med, scheduled))
        assert not created_again
        assert second.id == first.id

    async with session_factory() as db:
        logs = await AdherenceStore(db).list_logs(user.id)
    assert len(logs) == 1
    assert logs[0].status == "missed"


@pytest.mark.anyio
async def test_record_log_never_overwrites_taken(session_factory, make_user, make_medication):
    user = await make_user()
    med = await make_medication(user)
    scheduled = datetime(2025, 3, 10, 9, 0)

    async with session_factory() as db:
        log, _ = await AdherenceStore(db).record_log(intent_for(med, scheduled))
        log.status = "taken"
        await db.commit()

    async with session_factory() as db:
        log, created = await AdherenceStore(db).record_log(intent_for(med, scheduled))
    assert not created
    assert log.status == "taken"


@pytest.mark.anyio
async def test_list_logs_filters_by_day_and_medication(session_factory, make_user, make_medication):
    user = await make_user()
    morning = await make_medication(user, name="A")
    evening = await make_medication(user, name="B", times=("20:00",))

    async with session_factory() as db:
        store = AdherenceStore(db)
        await store.record_log(intent_for(morning, datetime(2025, 3, 10, 9, 0)))
        await store.record_log(intent_for(morning, datetime(2025, 3, 11, 9, 0)))
        await store.record_log(intent_for(evening, datetime(2025, 3, 10, 20, 0)))

        today = await store.list_logs(user.id, day=datetime(2025, 3, 10).date())
        assert [log.scheduled_time.hour for log in today] == [9, 20]

        only_morning = await store.list_logs(user.id, medication_id=morning.id)
        assert [log.scheduled_time.day for log in only_morning] == [10, 11]


@pytest.mark.anyio
async def test_medications_are_scoped_to_their_owner(session_factory, make_user, make_medication):
    owner = await make_user()
    stranger = await make_user(email="other@example.com")
    med = await make_medication(owner)

    async with session_factory() as db:
        store = AdherenceStore(db)
        assert await store.get_medication(owner.id, med.id) is not None
        assert await store.get_medication(stranger.id, med.id) is None
        assert await store.list_medications(stranger.id) == []


@pytest.mark.anyio
async def test_delete_medication_removes_logs_and_escalations(session_factory, make_user, make_medication):
    user = await make_user()
    med = await make_medication(user)
    scheduled = datetime(2025, 3, 10, 9, 0)

    async with session_factory() as db:
        store = AdherenceStore(db)
        await store.record_log(intent_for(med, scheduled))
        await store.schedule_escalation(user.id, med.id, scheduled, scheduled + timedelta(hours=1))
        await store.delete_medication(await store.get_medication(user.id, med.id))

    async with session_factory() as db:
        store = AdherenceStore(db)
        assert await store.list_medications(user.id) == []
        assert await store.list_logs(user.id) == []
        assert await store.pending_escalations(user.id) == []


@pytest.mark.anyio
async def test_escalation_queue(session_factory, make_user, make_medication):
    user = await make_user()
    med = await make_medication(user)
    scheduled = datetime(2025, 3, 10, 9, 0)
    fire_at = datetime(2025, 3, 10, 10, 3)

    async with session_factory() as db:
        store = AdherenceStore(db)
        task = await store.schedule_escalation(user.id, med.id, scheduled, fire_at)
        assert task is not None
        # one check per dose
        assert await store.schedule_escalation(user.id, med.id, scheduled, fire_at) is None

        assert await store.due_escalations(user.id, fire_at - timedelta(minutes=1)) == []
        due = await store.due_escalations(user.id, fire_at)
        assert [t.id for t in due] == [task.id]

        await store.complete_escalation(task)
        assert await store.due_escalations(user.id, fire_at + timedelta(hours=1)) == []
        assert await store.pending_escalations(user.id) == []
