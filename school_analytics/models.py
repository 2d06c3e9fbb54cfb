"""Data models for the School Analytics service."""

from typing import Optional, Dict, List
from pydantic import BaseModel, Field

FINISHED_PROJECT_STATUSES = {'concluído', 'concluido', 'completed', 'arquivado', 'archived'}
PRESENT_STATUSES = {'present', 'presente'}


class Student(BaseModel):
    """Student enrolled in a class."""
    id: str
    name: str
    email: Optional[str] = None
    class_id: Optional[str] = None
    xp: int = 0
    level: int = 1


class Project(BaseModel):
    """School project students deliver work for."""
    id: str
    title: str
    subject: str = ""
    status: str = ""
    teacher_id: Optional[str] = None
    delayed: bool = False

    @property
    def is_active(self) -> bool:
        return self.status.strip().lower() not in FINISHED_PROJECT_STATUSES


class Submission(BaseModel):
    """Evidence a student submitted for a project; grade is None until graded."""
    id: str
    project_id: str
    student_id: str
    grade: Optional[float] = Field(default=None, ge=0, le=100)


class AttendanceRecord(BaseModel):
    """Single attendance mark for a student."""
    student_id: str
    class_id: Optional[str] = None
    date: Optional[str] = None
    status: str

    @property
    def is_present(self) -> bool:
        return self.status.strip().lower() in PRESENT_STATUSES


class ClassGroup(BaseModel):
    """Class (turma) students belong to."""
    id: str
    name: str


class Competency(BaseModel):
    """BNCC competency."""
    id: str
    name: str
    category: str = ""


class ProjectCompetency(BaseModel):
    """Link between a project and a competency it works on."""
    project_id: str
    competency_id: str
    coverage: int = Field(default=0, ge=0, le=100)


class RiskThresholdsOverride(BaseModel):
    """Partial risk thresholds; unset fields fall back to defaults."""
    min_xp: Optional[int] = None
    max_absences: Optional[int] = None
    min_submissions: Optional[int] = None


class AnalyticsDataset(BaseModel):
    """Already-loaded records a report is computed from."""
    students: List[Student] = []
    projects: List[Project] = []
    submissions: List[Submission] = []
    attendance: List[AttendanceRecord] = []
    classes: List[ClassGroup] = []
    competencies: List[Competency] = []
    project_competencies: List[ProjectCompetency] = []
    thresholds: Optional[RiskThresholdsOverride] = None
    benchmark_projects: Optional[int] = Field(default=None, ge=0)


class OverviewReport(BaseModel):
    """School-wide totals."""
    total_students: int
    total_projects: int
    total_active_projects: int
    total_submissions: int
    average_submission_rate: int
    average_grade: int
    attendance_rate: int


class ClassEngagement(BaseModel):
    """Per-class engagement row."""
    class_id: Optional[str]
    class_name: str
    student_count: int
    submission_rate: int
    engagement: int
    attendance_rate: int
    average_grade: int


class CompetencyUsage(BaseModel):
    """How many projects work on a competency."""
    competency_id: str
    competency_name: str
    usage_count: int


class AtRiskStudent(BaseModel):
    """Student flagged by at least one risk factor."""
    id: str
    name: str
    class_name: str
    xp: int
    absences: int
    submissions: int
    reasons: List[str]


class DashboardReport(BaseModel):
    """All coordinator dashboard reports in one response."""
    overview: OverviewReport
    engagement: List[ClassEngagement]
    competencies: List[CompetencyUsage]
    at_risk_students: List[AtRiskStudent]


class ImportSummary(BaseModel):
    """Counts and row errors from a roster import."""
    total: int = 0
    imported: int = 0
    skipped: int = 0
    errors: List[str] = []


class RosterImportResponse(BaseModel):
    """Response from the roster upload endpoint."""
    success: bool
    message: str
    columns: Dict[str, Optional[str]]
    summary: ImportSummary
    students: List[Student]
