"""FastAPI main application for School Analytics."""

import csv
import logging
import traceback
from dataclasses import asdict, replace
from datetime import datetime
from io import StringIO
from typing import Dict, List, Optional

from fastapi import FastAPI, File, UploadFile, HTTPException, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from starlette.exceptions import HTTPException as StarletteHTTPException

from school_analytics.analytics import (
    calculate_attendance_rate,
    calculate_engagement,
    calculate_submission_rate,
)
from school_analytics.config import load_settings
from school_analytics.models import (
    AnalyticsDataset,
    AtRiskStudent,
    ClassEngagement,
    CompetencyUsage,
    DashboardReport,
    OverviewReport,
    RiskThresholdsOverride,
    RosterImportResponse,
    Student,
)
from school_analytics.parsers import load_table, parse_roster, detect_roster_columns
from school_analytics.reports import (
    build_competency_usage,
    build_dashboard,
    build_engagement,
    build_overview,
    find_at_risk_students,
)

settings = load_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="School Analytics", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler_json(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions and return JSON."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail}
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler_json(request: Request, exc: RequestValidationError):
    """Handle validation errors and return JSON."""
    content = {"detail": jsonable_encoder(exc.errors())}
    # Multipart bodies arrive as FormData, which is not JSON
    if isinstance(exc.body, (dict, list, str)):
        content["body"] = exc.body
    return JSONResponse(status_code=422, content=content)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions and return JSON."""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    error_detail = str(exc)
    if settings.debug:
        error_detail = f"{str(exc)}\n\n{traceback.format_exc()}"

    return JSONResponse(
        status_code=500,
        content={
            "detail": f"Internal server error: {error_detail}",
            "type": type(exc).__name__
        }
    )


# Latest roster import, kept for the CSV download
roster_cache: Dict[str, List[Student]] = {}


def with_defaults(dataset: AnalyticsDataset) -> AnalyticsDataset:
    """Fill the dataset's benchmark and thresholds from settings where unset."""
    thresholds = settings.risk_thresholds
    if dataset.thresholds is not None:
        thresholds = replace(thresholds, **dataset.thresholds.model_dump(exclude_none=True))

    benchmark = dataset.benchmark_projects
    if benchmark is None:
        benchmark = settings.benchmark_projects

    return dataset.model_copy(update={
        "thresholds": RiskThresholdsOverride(**asdict(thresholds)),
        "benchmark_projects": benchmark,
    })


@app.get("/health")
async def health_check():
    """Health check endpoint to test server connectivity."""
    return JSONResponse(content={"status": "ok", "message": "Server is running"})


@app.post("/analytics/overview", response_model=OverviewReport)
async def analytics_overview(dataset: AnalyticsDataset):
    """School-wide totals and rates."""
    return build_overview(with_defaults(dataset))


@app.post("/analytics/engagement", response_model=List[ClassEngagement])
async def analytics_engagement(dataset: AnalyticsDataset):
    """Engagement, delivery and attendance rates per class."""
    return build_engagement(with_defaults(dataset))


@app.post("/analytics/bncc", response_model=List[CompetencyUsage])
async def analytics_bncc(dataset: AnalyticsDataset, limit: Optional[int] = Query(default=None, ge=1)):
    """Most worked BNCC competencies."""
    return build_competency_usage(dataset, limit=limit)


@app.post("/analytics/at-risk-students", response_model=List[AtRiskStudent])
async def analytics_at_risk(dataset: AnalyticsDataset):
    """Students breaching any risk threshold."""
    return find_at_risk_students(with_defaults(dataset))


@app.post("/analytics/dashboard", response_model=DashboardReport)
async def analytics_dashboard(dataset: AnalyticsDataset, competency_limit: Optional[int] = Query(default=5, ge=1)):
    """Every coordinator report in one call."""
    report = build_dashboard(with_defaults(dataset), competency_limit=competency_limit)
    logger.info(
        "Dashboard: %d students, %d classes, %d at risk",
        report.overview.total_students, len(report.engagement), len(report.at_risk_students)
    )
    return report


@app.get("/analytics/submission-rate")
async def submission_rate(
    total_submissions: int = Query(..., ge=0),
    total_students: int = Query(..., ge=0),
    total_projects: int = Query(..., ge=0),
):
    return {"rate": calculate_submission_rate(total_submissions, total_students, total_projects)}


@app.get("/analytics/engagement-rate")
async def engagement_rate(
    class_submissions: int = Query(..., ge=0),
    class_students: int = Query(..., ge=0),
    benchmark_projects: Optional[int] = Query(default=None, ge=0),
):
    if benchmark_projects is None:
        benchmark_projects = settings.benchmark_projects
    return {"rate": calculate_engagement(class_submissions, class_students, benchmark_projects)}


@app.get("/analytics/attendance-rate")
async def attendance_rate(
    present_count: int = Query(..., ge=0),
    total_records: int = Query(..., ge=0),
):
    return {"rate": calculate_attendance_rate(present_count, total_records)}


@app.post("/import/students", response_model=RosterImportResponse)
async def import_students(file: UploadFile = File(...)):
    """Parse a roster spreadsheet (Excel or CSV) into students."""
    file_bytes = await file.read()
    if len(file_bytes) > settings.max_upload_size:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum size: {settings.max_upload_size_mb}MB"
        )

    try:
        df = load_table(file_bytes, file.filename or "")
        students, summary = parse_roster(df)
        columns = detect_roster_columns(list(df.columns))
    except ValueError as e:
        logger.warning("Roster import rejected: %s", e)
        raise HTTPException(status_code=400, detail=str(e))

    session_id = datetime.now().isoformat()
    roster_cache.clear()
    roster_cache[session_id] = students

    return RosterImportResponse(
        success=True,
        message=(
            f"Import finished: {summary.imported} imported, "
            f"{summary.skipped} skipped of {summary.total} rows"
        ),
        columns=columns,
        summary=summary,
        students=students,
    )


@app.get("/import/students.csv")
async def download_students_csv():
    """Download the last imported roster as CSV."""
    if not roster_cache:
        raise HTTPException(status_code=404, detail="No roster imported")

    latest_session = max(roster_cache.keys())
    students = roster_cache[latest_session]

    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(['Name', 'Email', 'Class', 'XP'])
    for student in students:
        writer.writerow([student.name, student.email, student.class_id or '', student.xp])

    output.seek(0)

    return StreamingResponse(
        iter([output.getvalue()]),
        media_type="text/csv",
        headers={
            "Content-Disposition": f"attachment; filename=students_{latest_session[:10]}.csv"
        }
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
