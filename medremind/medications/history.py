import uuid
from datetime import date, datetime, time, timedelta
from typing import List

from medremind.store.adherence import AdherenceStore


def summarize(logs) -> dict:
    taken = sum(1 for log in logs if log.status == "taken")
    missed = sum(1 for log in logs if log.status == "missed")
    total = len(logs)
    percentage = round((taken / total * 100)) if total > 0 else 0
    return {"taken": taken, "missed": missed, "total": total, "percentage": percentage}


async def day_summary(store: AdherenceStore, user_id: uuid.UUID, day: date) -> dict:
    logs = await store.list_logs(user_id, day=day)
    return {
        "date": day,
        "day": day.strftime("%a"),  # Mon, Tue, etc
        **summarize(logs),
        "logs": logs,
    }


async def week_summary(store: AdherenceStore, user_id: uuid.UUID, day: date) -> dict:
    """
    Adherence for the Monday-to-Sunday week containing ``day``.
    Returns daily breakdown + overall stats.
    """
    week_start = day - timedelta(days=day.weekday())
    week_end = week_start + timedelta(days=6)

    logs = await store.list_logs(
        user_id,
        start=datetime.combine(week_start, time.min),
        end=datetime.combine(week_end + timedelta(days=1), time.min),
    )

    days: List[dict] = []
    for offset in range(7):
        target = week_start + timedelta(days=offset)
        day_logs = [log for log in logs if log.scheduled_time.date() == target]
        days.append({
            "date": target,
            "day": target.strftime("%a"),
            **summarize(day_logs),
            "logs": day_logs,
        })

    overall = summarize(logs)
    perfect_days = sum(1 for d in days if d["percentage"] == 100 and d["total"] > 0)

    # Consecutive 100% days, counted back from the last day that has logs
    current_streak = 0
    for d in reversed(days):
        if d["total"] == 0 and current_streak == 0:
            continue
        if d["percentage"] == 100 and d["total"] > 0:
            current_streak += 1
        else:
            break

    return {
        "start_date": week_start,
        "end_date": week_end,
        "days": days,
        "taken": overall["taken"],
        "total": overall["total"],
        "percentage": overall["percentage"],
        "perfect_days": perfect_days,
        "current_streak": current_streak,
    }
