from typing import Iterable, List, Optional

from library_portal.schemas.student_schemas import StudentRecord

ALL = "all"


def _active(criterion: Optional[str]) -> bool:
    return bool(criterion) and criterion.strip().lower() != ALL


def filter_students(
    records: Iterable[StudentRecord],
    search: Optional[str] = None,
    course: Optional[str] = None,
    admitted_year: Optional[str] = None,
) -> List[StudentRecord]:
    """Management-table filter: search text AND course AND admitted year.

    The search text matches name, PRN, email or library number as a
    case-insensitive substring. ``None``, ``""`` and ``"all"`` switch a
    criterion off. Input order is kept.
    """
    needle = search.strip().lower() if search and search.strip() else None
    wanted_course = course.strip() if _active(course) else None
    wanted_year = admitted_year.strip() if _active(admitted_year) else None

    selected = []
    for record in records:
        if needle is not None:
            haystacks = (
                record.name,
                record.prn,
                record.email,
                record.library_number,
            )
            if not any(needle in (text or "").lower() for text in haystacks):
                continue
        if wanted_course is not None and record.course != wanted_course:
            continue
        if wanted_year is not None and record.admitted_year != wanted_year:
            continue
        selected.append(record)
    return selected
