from __future__ import annotations

from collections import OrderedDict
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .filters import GRADE_BUCKETS, grade_bucket
from .records import Grade
from .weeks import iso_week, parse_instant

GROUP_BY_OPTIONS = ("course", "assignment", "week")


def _average(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return round(sum(values) / len(values), 2)


def _group_key(grade: Grade, group_by: str) -> Tuple[str, str]:
    """(key, label) of the group a grade belongs to."""
    if group_by == "course":
        key = grade.course_id or "unknown"
        return key, grade.course_name or key
    if group_by == "assignment":
        return grade.assignment_id, grade.assignment_title or grade.assignment_id
    graded_at = parse_instant(grade.graded_at)
    if graded_at is None:
        return "unknown", "unknown"
    week, year = iso_week(graded_at)
    key = f"{year}-W{week:02d}"
    return key, key


def breakdown(grades: Sequence[Grade], group_by: str) -> List[Dict[str, Any]]:
    if group_by not in GROUP_BY_OPTIONS:
        raise ValueError(f"Unsupported groupBy: {group_by}")
    groups: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
    for grade in grades:
        key, label = _group_key(grade, group_by)
        group = groups.setdefault(key, {"key": key, "label": label, "grades": []})
        group["grades"].append(grade.grade)

    rows = []
    for key in sorted(groups):
        values = groups[key]["grades"]
        rows.append(
            {
                "key": key,
                "label": groups[key]["label"],
                "count": len(values),
                "averageGrade": _average(values),
                "highestGrade": max(values),
                "lowestGrade": min(values),
            }
        )
    return rows


def grade_aggregates(grades: Sequence[Grade], group_by: Optional[str] = None) -> Dict[str, Any]:
    """Summary statistics over a filtered set of grades (before pagination)."""
    distribution = {bucket: 0 for bucket in GRADE_BUCKETS}
    for grade in grades:
        distribution[grade_bucket(grade.grade)] += 1

    result: Dict[str, Any] = {
        "totalSubmissions": len(grades),
        "averageGrade": _average([g.grade for g in grades]),
        "gradeDistribution": distribution,
    }
    if group_by:
        result["groupBy"] = group_by
        result["breakdown"] = breakdown(grades, group_by)
    return result
