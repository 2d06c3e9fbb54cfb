"""Coordinator dashboard reports built on the metric calculations."""

import logging
from typing import Dict, List, Mapping, Optional, Union

import pandas as pd

from school_analytics.analytics import (
    DEFAULT_BENCHMARK_PROJECTS,
    RiskThresholds,
    calculate_attendance_rate,
    calculate_average_grade,
    calculate_engagement,
    calculate_submission_rate,
    deduplicate_by,
    risk_factors,
)
from school_analytics.models import (
    AnalyticsDataset,
    AtRiskStudent,
    ClassEngagement,
    CompetencyUsage,
    DashboardReport,
    OverviewReport,
    Student,
)

logger = logging.getLogger(__name__)

UNASSIGNED_CLASS_NAME = "Sem turma"


class _Records:
    """Dataset with duplicate ids dropped, first occurrence kept."""

    def __init__(self, dataset: AnalyticsDataset):
        self.students = deduplicate_by(dataset.students, lambda s: s.id)
        self.projects = deduplicate_by(dataset.projects, lambda p: p.id)
        self.submissions = deduplicate_by(dataset.submissions, lambda s: s.id)
        self.classes = deduplicate_by(dataset.classes, lambda c: c.id)
        self.attendance = dataset.attendance
        self.active_project_ids = {p.id for p in self.projects if p.is_active}
        self.class_names = {c.id: c.name for c in self.classes}

    def class_name(self, class_id: Optional[str]) -> str:
        if not class_id:
            return UNASSIGNED_CLASS_NAME
        return self.class_names.get(class_id, class_id)


def _submission_frame(records: _Records) -> pd.DataFrame:
    return pd.DataFrame(
        [s.model_dump() for s in records.submissions],
        columns=["id", "project_id", "student_id", "grade"],
    )


def _student_activity(records: _Records) -> pd.DataFrame:
    """
    Per-student counts indexed by student id.

    Columns: submissions, delivered (distinct active projects delivered),
    present, records, absences.
    """
    index = pd.Index([s.id for s in records.students], name="student_id")
    submissions = _submission_frame(records)

    submission_counts = submissions.groupby("student_id").size()
    delivered = (
        submissions[submissions["project_id"].isin(records.active_project_ids)]
        .drop_duplicates(["student_id", "project_id"])
        .groupby("student_id")
        .size()
    )

    attendance = pd.DataFrame({
        "student_id": pd.Series([r.student_id for r in records.attendance], dtype=object),
        "present": pd.Series([r.is_present for r in records.attendance], dtype=bool),
    })
    grouped = attendance.groupby("student_id")["present"]

    activity = pd.DataFrame(index=index)
    activity["submissions"] = submission_counts.reindex(index, fill_value=0).astype(int)
    activity["delivered"] = delivered.reindex(index, fill_value=0).astype(int)
    activity["present"] = grouped.sum().reindex(index, fill_value=0).astype(int)
    activity["records"] = grouped.size().reindex(index, fill_value=0).astype(int)
    activity["absences"] = activity["records"] - activity["present"]
    return activity


def build_overview(dataset: AnalyticsDataset) -> OverviewReport:
    """
    Compute school-wide totals and rates.

    The submission rate counts distinct (student, active project) deliveries
    against every student delivering every active project.
    """
    records = _Records(dataset)
    activity = _student_activity(records)
    present = sum(1 for r in records.attendance if r.is_present)

    return OverviewReport(
        total_students=len(records.students),
        total_projects=len(records.projects),
        total_active_projects=len(records.active_project_ids),
        total_submissions=len(records.submissions),
        average_submission_rate=calculate_submission_rate(
            int(activity["delivered"].sum()),
            len(records.students),
            len(records.active_project_ids),
        ),
        average_grade=calculate_average_grade(records.submissions),
        attendance_rate=calculate_attendance_rate(present, len(records.attendance)),
    )


def _class_groups(records: _Records) -> Dict[Optional[str], List[Student]]:
    # Known classes first, then unknown class ids as seen, then unassigned
    groups: Dict[Optional[str], List[Student]] = {c.id: [] for c in records.classes}
    unassigned: List[Student] = []
    for student in records.students:
        if student.class_id:
            groups.setdefault(student.class_id, []).append(student)
        else:
            unassigned.append(student)
    if unassigned:
        groups[None] = unassigned
    return groups


def build_engagement(dataset: AnalyticsDataset) -> List[ClassEngagement]:
    """
    Compute one engagement row per class.

    ``submission_rate`` is measured against the active projects, while
    ``engagement`` is measured against the benchmark project count.
    """
    records = _Records(dataset)
    activity = _student_activity(records)
    benchmark = dataset.benchmark_projects
    if benchmark is None:
        benchmark = DEFAULT_BENCHMARK_PROJECTS

    rows = []
    for class_id, students in _class_groups(records).items():
        ids = [s.id for s in students]
        id_set = set(ids)
        class_activity = activity.loc[ids]
        class_submissions = [s for s in records.submissions if s.student_id in id_set]

        rows.append(ClassEngagement(
            class_id=class_id,
            class_name=records.class_name(class_id),
            student_count=len(ids),
            submission_rate=calculate_submission_rate(
                int(class_activity["delivered"].sum()),
                len(ids),
                len(records.active_project_ids),
            ),
            engagement=calculate_engagement(
                int(class_activity["submissions"].sum()),
                len(ids),
                benchmark,
            ),
            attendance_rate=calculate_attendance_rate(
                int(class_activity["present"].sum()),
                int(class_activity["records"].sum()),
            ),
            average_grade=calculate_average_grade(class_submissions),
        ))

    logger.info("Engagement computed for %d classes", len(rows))
    return rows


def build_competency_usage(dataset: AnalyticsDataset, limit: Optional[int] = None) -> List[CompetencyUsage]:
    """
    Count the distinct projects working on each competency.

    Args:
        dataset: Records to report on
        limit: Keep only the first ``limit`` entries

    Returns:
        Usage entries sorted by count descending, then competency name
    """
    names = {c.id: c.name for c in dataset.competencies}
    links = pd.DataFrame(
        [pc.model_dump() for pc in dataset.project_competencies],
        columns=["project_id", "competency_id"],
    )
    if links.empty:
        return []

    counts = links.drop_duplicates().groupby("competency_id")["project_id"].nunique()
    usage = [
        CompetencyUsage(
            competency_id=str(competency_id),
            competency_name=names.get(competency_id, str(competency_id)),
            usage_count=int(count),
        )
        for competency_id, count in counts.items()
    ]
    usage.sort(key=lambda u: (-u.usage_count, u.competency_name))

    if limit is not None:
        usage = usage[:limit]
    return usage


def find_at_risk_students(
    dataset: AnalyticsDataset,
    thresholds: Union[RiskThresholds, Mapping[str, int], None] = None
) -> List[AtRiskStudent]:
    """
    List students breaching at least one risk threshold.

    Thresholds come from the argument, else from the dataset, else defaults.
    Students are ordered by how many factors they breach, then by name.
    """
    if thresholds is None and dataset.thresholds is not None:
        thresholds = dataset.thresholds.model_dump(exclude_none=True)
    limits = RiskThresholds.from_partial(thresholds)

    records = _Records(dataset)
    activity = _student_activity(records)

    flagged = []
    for student in records.students:
        absences = int(activity.at[student.id, "absences"])
        submission_count = int(activity.at[student.id, "submissions"])
        reasons = risk_factors(student, absences, submission_count, limits)
        if not reasons:
            continue
        flagged.append(AtRiskStudent(
            id=student.id,
            name=student.name,
            class_name=records.class_name(student.class_id),
            xp=student.xp,
            absences=absences,
            submissions=submission_count,
            reasons=reasons,
        ))

    flagged.sort(key=lambda s: (-len(s.reasons), s.name))
    logger.info("%d of %d students at risk", len(flagged), len(records.students))
    return flagged


def build_dashboard(dataset: AnalyticsDataset, competency_limit: Optional[int] = None) -> DashboardReport:
    """Build every coordinator report for one dataset."""
    return DashboardReport(
        overview=build_overview(dataset),
        engagement=build_engagement(dataset),
        competencies=build_competency_usage(dataset, limit=competency_limit),
        at_risk_students=find_at_risk_students(dataset),
    )
