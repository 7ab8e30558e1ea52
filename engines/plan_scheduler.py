"""Turns a selected plan into dated study sessions with milestones."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional, Sequence, Union

from engines.path_planner import Plan, PlanStateError, PlanStatus
from structured_log import log_json

logger = logging.getLogger(__name__)

DEFAULT_HOUR = 19
WEEKLY_REVIEW_INTERVAL = 7


@dataclass
class ScheduledSession:
    number: int
    start: datetime
    topic_id: str
    name: str
    duration: float
    activities: List[Dict[str, Any]]
    objectives: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "number": self.number,
            "start": self.start.isoformat(),
            "topic_id": self.topic_id,
            "name": self.name,
            "duration": self.duration,
            "activities": [dict(activity) for activity in self.activities],
            "objectives": list(self.objectives),
        }


@dataclass
class Milestone:
    type: str
    session_number: int
    description: str
    assessment: str
    topic_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "type": self.type,
            "session_number": self.session_number,
            "description": self.description,
            "assessment": self.assessment,
        }
        if self.topic_id is not None:
            payload["topic_id"] = self.topic_id
        return payload


@dataclass
class StudySchedule:
    sessions: List[ScheduledSession] = field(default_factory=list)
    milestones: List[Milestone] = field(default_factory=list)
    total_duration: float = 0.0
    sessions_per_week: int = 5

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessions": [session.to_dict() for session in self.sessions],
            "milestones": [milestone.to_dict() for milestone in self.milestones],
            "total_duration": self.total_duration,
            "sessions_per_week": self.sessions_per_week,
        }


def session_start(
    start: datetime,
    index: int,
    sessions_per_week: int,
    preferred_hours: Sequence[int] = (),
    minute: int = 0,
) -> datetime:
    """Date of the ``index``-th session: whole weeks plus an even spread inside the week."""

    week, slot = divmod(index, sessions_per_week)
    offset_days = week * 7 + (slot * 7) // sessions_per_week
    hour = preferred_hours[slot % len(preferred_hours)] if preferred_hours else DEFAULT_HOUR
    day = (start + timedelta(days=offset_days)).date()
    return datetime.combine(day, time(hour=hour, minute=minute), tzinfo=start.tzinfo)


def generate_milestones(sessions: Sequence[ScheduledSession]) -> List[Milestone]:
    total = len(sessions)
    milestones: List[Milestone] = [
        Milestone(
            type="weekly_review",
            session_number=number,
            description=f"Review progress after {number} sessions",
            assessment="comprehensive_quiz",
        )
        for number in range(WEEKLY_REVIEW_INTERVAL, total, WEEKLY_REVIEW_INTERVAL)
    ]

    grouped: Dict[str, List[ScheduledSession]] = {}
    for session in sessions:
        grouped.setdefault(session.topic_id, []).append(session)
    for topic_id, group in grouped.items():
        if len(group) >= 2:
            milestones.append(
                Milestone(
                    type="concept_mastery",
                    session_number=group[-1].number,
                    description=f"Master {group[-1].name}",
                    assessment="concept_quiz",
                    topic_id=topic_id,
                )
            )

    if total:
        milestones.append(
            Milestone(
                type="course_completion",
                session_number=total,
                description="Complete learning plan",
                assessment="final_assessment",
            )
        )
    milestones.sort(key=lambda milestone: milestone.session_number)
    return milestones


class PlanScheduler:
    def __init__(self, *, emit_events: bool = True) -> None:
        self.emit_events = emit_events

    def generate_study_schedule(
        self,
        plan: Plan,
        start: Union[datetime, date, None] = None,
        sessions_per_week: int = 5,
        preferred_times: Optional[Sequence[int]] = None,
        preferred_minute: int = 0,
    ) -> StudySchedule:
        """Date every session of a selected ``plan`` and mark it scheduled.

        Raises ``ValueError`` for a non-positive weekly cadence or an hour
        outside 0..23, and ``PlanStateError`` when the plan was not selected.
        """

        if sessions_per_week < 1:
            raise ValueError("sessions_per_week must be at least 1")
        hours = list(preferred_times or [])
        for hour in hours:
            if not 0 <= int(hour) <= 23:
                raise ValueError(f"Preferred hour must be within 0..23, got {hour}")
        if not 0 <= preferred_minute <= 59:
            raise ValueError(f"Preferred minute must be within 0..59, got {preferred_minute}")
        if plan.status is not PlanStatus.SELECTED:
            raise PlanStateError(f"Only selected plans can be scheduled, plan is {plan.status.value}")

        if start is None:
            start = datetime.now()
        elif not isinstance(start, datetime):
            start = datetime.combine(start, time())

        schedule = StudySchedule(total_duration=plan.total_time, sessions_per_week=sessions_per_week)
        for index, session in enumerate(plan.sessions):
            schedule.sessions.append(
                ScheduledSession(
                    number=index + 1,
                    start=session_start(
                        start, index, sessions_per_week, [int(hour) for hour in hours], preferred_minute
                    ),
                    topic_id=session.topic_id,
                    name=session.name,
                    duration=session.duration,
                    activities=session.activities,
                    objectives=session.objectives,
                )
            )
        schedule.milestones = generate_milestones(schedule.sessions)
        plan.transition(PlanStatus.SCHEDULED)
        if self.emit_events:
            log_json(
                "plan_scheduled",
                {
                    "strategy": plan.strategy,
                    "sessions": len(schedule.sessions),
                    "milestones": len(schedule.milestones),
                    "first_session": schedule.sessions[0].start.isoformat() if schedule.sessions else None,
                },
            )
        return schedule


__all__ = [
    "Milestone",
    "PlanScheduler",
    "ScheduledSession",
    "StudySchedule",
    "generate_milestones",
    "session_start",
]
