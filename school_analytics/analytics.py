"""Metric calculations for dashboards: rates, averages, risk flags."""

import math
from dataclasses import dataclass, fields, replace
from typing import Any, Callable, Dict, Hashable, Iterable, List, Mapping, TypeVar, Union

T = TypeVar('T')

DEFAULT_BENCHMARK_PROJECTS = 5


@dataclass(frozen=True)
class RiskThresholds:
    """Limits used to flag a student as at risk."""
    min_xp: int = 100
    max_absences: int = 5
    min_submissions: int = 1

    @classmethod
    def from_partial(
        cls,
        overrides: Union['RiskThresholds', Mapping[str, int], None] = None
    ) -> 'RiskThresholds':
        """
        Build thresholds from a full object, a partial mapping or None.

        Fields missing from the mapping keep their default values. Unknown
        keys are ignored.
        """
        if overrides is None:
            return cls()
        if isinstance(overrides, RiskThresholds):
            return overrides
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in overrides.items() if k in known and v is not None}
        return replace(cls(), **values)


def _round_half_up(value: float) -> int:
    # halves round up: 12.5 -> 13
    return int(math.floor(value + 0.5))


def _field(item: Any, name: str, default: Any = None) -> Any:
    if isinstance(item, Mapping):
        return item.get(name, default)
    return getattr(item, name, default)


def calculate_submission_rate(
    total_submissions: int,
    total_students: int,
    total_projects: int
) -> int:
    """
    Calculate the share of expected submissions that were received.

    Args:
        total_submissions: Number of submissions received
        total_students: Total number of students
        total_projects: Total number of projects

    Returns:
        Submission rate as percentage (0-100)
    """
    if total_students == 0 or total_projects == 0:
        return 0

    total_possible = total_students * total_projects
    rate = (total_submissions / total_possible) * 100

    return min(_round_half_up(rate), 100)


def calculate_engagement(
    class_submissions: int,
    class_students: int,
    benchmark_projects: int = DEFAULT_BENCHMARK_PROJECTS
) -> int:
    """
    Calculate engagement rate for a class against a benchmark project count.

    Args:
        class_submissions: Number of submissions from the class
        class_students: Number of students in the class
        benchmark_projects: Projects each student is expected to deliver

    Returns:
        Engagement rate as percentage (0-100). A zero benchmark yields 0.
    """
    expected_submissions = class_students * benchmark_projects
    if expected_submissions == 0:
        return 0

    rate = (class_submissions / expected_submissions) * 100

    return min(_round_half_up(rate), 100)


def calculate_attendance_rate(present_count: int, total_records: int) -> int:
    """
    Calculate attendance rate.

    The result is not capped: more present marks than records gives a value
    above 100.
    """
    if total_records == 0:
        return 0

    return _round_half_up((present_count / total_records) * 100)


def calculate_average_grade(submissions: Iterable[Any]) -> int:
    """
    Calculate the average grade over graded submissions.

    Submissions whose grade is None are left out instead of counting as zero.

    Args:
        submissions: Submission models or mappings with a ``grade`` field

    Returns:
        Average grade (0-100), or 0 if no submission is graded
    """
    grades = [g for g in (_field(s, 'grade') for s in submissions) if g is not None]

    if not grades:
        return 0

    return _round_half_up(sum(grades) / len(grades))


def is_student_at_risk(
    student: Any,
    absence_count: int,
    submission_count: int,
    thresholds: Union[RiskThresholds, Mapping[str, int], None] = None
) -> bool:
    """
    Determine if a student is at risk.

    A student is flagged when any single factor breaches its threshold:
    low XP, too many absences or too few submissions.

    Args:
        student: Student model or mapping with an ``xp`` field
        absence_count: Number of absences
        submission_count: Number of submissions
        thresholds: Full or partial thresholds; missing fields use defaults

    Returns:
        True if the student is at risk
    """
    return bool(risk_factors(student, absence_count, submission_count, thresholds))


def risk_factors(
    student: Any,
    absence_count: int,
    submission_count: int,
    thresholds: Union[RiskThresholds, Mapping[str, int], None] = None
) -> List[str]:
    """List the risk factors a student breaches, in a fixed order."""
    limits = RiskThresholds.from_partial(thresholds)
    reasons = []
    if _field(student, 'xp', 0) < limits.min_xp:
        reasons.append('low_xp')
    if absence_count > limits.max_absences:
        reasons.append('high_absences')
    if submission_count < limits.min_submissions:
        reasons.append('few_submissions')
    return reasons


def deduplicate_by(items: Iterable[T], key_fn: Callable[[T], Hashable]) -> List[T]:
    """
    Keep the first item seen for each key, in first-seen order.

    Args:
        items: Items of any type
        key_fn: Function extracting the key (usually a str or int) from an item

    Returns:
        Deduplicated list
    """
    seen: Dict[Hashable, T] = {}
    for item in items:
        key = key_fn(item)
        if key not in seen:
            seen[key] = item
    return list(seen.values())
