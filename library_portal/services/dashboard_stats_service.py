from datetime import datetime, timedelta
from typing import Dict, Iterable, Optional

from fastapi import Depends

from library_portal.config.settings import settings
from library_portal.schemas.student_schemas import DashboardStats, StudentRecord
from library_portal.services.student_service import StudentService, get_student_service
from library_portal.utils.datetime_utils import parse_timestamp, to_utc, utc_now
from library_portal.utils.logging import get_logger

logger = get_logger()

UNASSIGNED_COURSE = "N/A"


def summarize_students(
    records: Iterable[StudentRecord],
    now: Optional[datetime] = None,
    window_days: Optional[int] = None,
) -> DashboardStats:
    """
    Count students, students per course and recent registrations.

    A registration is recent when it falls in ``(now - window_days, now]``.
    Students without a course are counted under ``N/A`` so the distribution
    always adds up to the total.
    """
    now = to_utc(now) if now else utc_now()
    if window_days is None:
        window_days = settings.NEW_REGISTRATION_WINDOW_DAYS
    window_start = now - timedelta(days=window_days)

    total = 0
    new_registrations = 0
    course_distribution: Dict[str, int] = {}
    for record in records:
        total += 1
        course = record.course or UNASSIGNED_COURSE
        course_distribution[course] = course_distribution.get(course, 0) + 1

        registered_at = parse_timestamp(record.registration_date)
        if registered_at is not None and window_start < registered_at <= now:
            new_registrations += 1

    return DashboardStats(
        total_students=total,
        new_registrations=new_registrations,
        course_distribution=course_distribution,
    )


class DashboardStatsService:
    """Librarian dashboard figures, recomputed from the record store on every call."""

    def __init__(self, student_service: StudentService):
        self.student_service = student_service

    async def compute_stats(self, now: Optional[datetime] = None) -> DashboardStats:
        records = await self.student_service.list_all()
        stats = summarize_students(records, now=now)

        logger.info(
            f"Dashboard stats - total: {stats.total_students}, "
            f"new: {stats.new_registrations}, courses: {stats.course_distribution}"
        )
        return stats


def get_dashboard_stats_service(
    student_service: StudentService = Depends(get_student_service),
) -> DashboardStatsService:
    return DashboardStatsService(student_service)
