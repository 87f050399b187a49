"""
Derived numbers served next to the stored documents: weighted grades,
attendance projection, deadline priority, weak topics and study totals.

Everything here is a pure function of its arguments so the handlers decide
when (and against which clock) each rule runs.
"""
import math
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from database import as_naive_utc

DEFAULT_ATTENDANCE_TARGET = 75.0

# Upper bound (in days until due) of each priority bucket
URGENT_WITHIN_DAYS = 3
SOON_WITHIN_DAYS = 7

WEAK_COMPLETION_RATE = 50.0

PERIOD_DAYS = {"week": 7, "month": 30}
HEATMAP_DAYS = 90


# Grading

def score_percentage(obtained: float, max_value: float) -> float:
    if not max_value:
        return 0.0
    return obtained / max_value * 100


def grade_breakdown(components: List[Dict[str, Any]], scores: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Weighted total of a grading scheme against the recorded scores.

    Scores are matched to components by exact name, the first match wins.
    Components with no score add nothing to the total and the total is not
    rescaled, so missing components simply cap the reachable grade.
    """
    current_total = 0.0
    breakdown = []

    for component in components:
        score = next((s for s in scores if s.get("component_name") == component["name"]), None)

        if score is None:
            breakdown.append({
                "name": component["name"],
                "obtained": None,
                "max": None,
                "percentage": None,
                "weightage": component["weightage"],
                "weighted_score": 0,
                "max_marks": component.get("max_marks"),
            })
            continue

        percentage = score_percentage(score["obtained"], score["max"])
        weighted_score = percentage * component["weightage"] / 100
        current_total += weighted_score

        breakdown.append({
            "name": component["name"],
            "obtained": score["obtained"],
            "max": score["max"],
            "percentage": round(percentage, 2),
            "weightage": component["weightage"],
            "weighted_score": round(weighted_score, 2),
            "max_marks": component.get("max_marks"),
            "class_average": score.get("class_average"),
        })

    return {"current_total": round(current_total, 2), "breakdown": breakdown}


# Attendance

def classes_needed(attended: int, total: int, target: float = DEFAULT_ATTENDANCE_TARGET) -> int:
    """Consecutive classes to attend before attended/total reaches target percent.

    Solves (attended + x) / (total + x) >= target / 100 for the smallest
    non-negative integer x.
    """
    if not 0 <= target < 100:
        raise ValueError(f"Attendance target must be in [0, 100), got {target}")
    needed = math.ceil((target * total - attended * 100) / (100 - target))
    return max(0, needed)


def attendance_summary(entries: Iterable[Dict[str, Any]], target: float = DEFAULT_ATTENDANCE_TARGET) -> Dict[str, Any]:
    present = late = absent = 0
    for entry in entries:
        status = entry.get("status")
        if status == "present":
            present += 1
        elif status == "late":
            late += 1
        elif status == "absent":
            absent += 1

    total = present + late + absent
    # Late still counts as attended
    attended = present + late
    percentage = attended / total * 100 if total else 0.0
    below_target = percentage < target

    return {
        "total_classes": total,
        "present": present,
        "late": late,
        "absent": absent,
        "attended": attended,
        "percentage": round(percentage, 2),
        "target": target,
        "below_target": below_target,
        "classes_needed": classes_needed(attended, total, target) if below_target else 0,
    }


# Deadlines

def days_until(due_date: datetime, now: datetime) -> int:
    delta = as_naive_utc(due_date) - as_naive_utc(now)
    return math.ceil(delta.total_seconds() / timedelta(days=1).total_seconds())


def derive_priority(due_date: datetime, now: datetime) -> str:
    days = days_until(due_date, now)
    if days < 0:
        return "overdue"
    if days <= URGENT_WITHIN_DAYS:
        return "urgent"
    if days <= SOON_WITHIN_DAYS:
        return "soon"
    return "later"


# Topics

def completion_rate(completed: int, total: int) -> float:
    return completed / total * 100 if total else 0.0


def weakness_reason(status: str, total_resources: int, completed_resources: int) -> Optional[str]:
    """Why a topic counts as weak, or None when it does not."""
    rate = completion_rate(completed_resources, total_resources)
    is_weak = (
        status in ("needs-practice", "learning")
        or (rate < WEAK_COMPLETION_RATE and total_resources > 0)
        or (status == "not-started" and total_resources > 0)
    )
    if not is_weak:
        return None
    if rate < WEAK_COMPLETION_RATE:
        return "Low completion rate"
    return f"Status: {status}"


# Study sessions

def session_minutes(start_time: datetime, end_time: datetime) -> int:
    seconds = (as_naive_utc(end_time) - as_naive_utc(start_time)).total_seconds()
    return max(0, round(seconds / 60))


def period_start(period: str, now: datetime) -> datetime:
    if period == "day":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    return now - timedelta(days=PERIOD_DAYS.get(period, PERIOD_DAYS["week"]))


def minutes_by_day(sessions: Iterable[Dict[str, Any]]) -> Dict[str, float]:
    totals: Dict[str, float] = OrderedDict()
    for session in sorted(sessions, key=lambda s: s["date"]):
        key = session["date"].date().isoformat()
        totals[key] = totals.get(key, 0) + session.get("duration", 0)
    return dict(totals)


def minutes_by_subject(
    sessions: Iterable[Dict[str, Any]], subjects: Dict[str, Dict[str, Any]]
) -> List[Dict[str, Any]]:
    stats: Dict[str, Dict[str, Any]] = OrderedDict()
    for session in sessions:
        subject_id = session["subject_id"]
        if subject_id not in stats:
            subject = subjects.get(subject_id, {})
            stats[subject_id] = {
                "subject_id": subject_id,
                "subject_name": subject.get("name"),
                "subject_color": subject.get("color"),
                "total_minutes": 0,
                "session_count": 0,
            }
        stats[subject_id]["total_minutes"] += session.get("duration", 0)
        stats[subject_id]["session_count"] += 1
    return list(stats.values())


def study_stats(
    sessions: List[Dict[str, Any]],
    subjects: Dict[str, Dict[str, Any]],
    period: str,
    now: datetime,
) -> Dict[str, Any]:
    """Totals for the requested period plus a fixed 90-day heatmap.

    sessions must already cover the heatmap window; the period window is cut
    out of it here.
    """
    now = as_naive_utc(now)
    heatmap_from = now - timedelta(days=HEATMAP_DAYS)
    period_from = period_start(period, now)

    heatmap_sessions = [s for s in sessions if heatmap_from <= s["date"] <= now]
    period_sessions = [s for s in heatmap_sessions if s["date"] >= period_from]

    total_minutes = sum(s.get("duration", 0) for s in period_sessions)

    return {
        "period": period,
        "total_minutes": total_minutes,
        "total_hours": round(total_minutes / 60, 2),
        "session_count": len(period_sessions),
        "subject_distribution": minutes_by_subject(period_sessions, subjects),
        "daily_stats": minutes_by_day(period_sessions),
        "heatmap_data": minutes_by_day(heatmap_sessions),
    }
