"""Roster spreadsheet parsing and column detection."""

import logging
import re
import unicodedata
from io import BytesIO
from typing import Dict, List, Optional, Pattern, Tuple, Union

import numpy as np
import pandas as pd
from openpyxl import load_workbook

from school_analytics.analytics import deduplicate_by
from school_analytics.models import ImportSummary, Student

logger = logging.getLogger(__name__)

EXCEL_EXTENSIONS = (".xlsx",)
CSV_EXTENSIONS = (".csv",)
SUPPORTED_EXTENSIONS = EXCEL_EXTENSIONS + CSV_EXTENSIONS

# Substrings matched against normalized column names, checked in order
NAME_HINTS = ("nome", "name", "aluno", "student")
EMAIL_HINTS = ("email", "e-mail")
CLASS_HINTS = ("turma", "class", "sala")
# Whole words only: "experiencia" must not match "xp"
XP_PATTERN = re.compile(r"\b(xp|pontos|points)\b")


def normalize_col_name(col_name) -> str:
    """
    Normalize a column name for matching.

    Lowercases, strips accents and collapses whitespace, so ``' Nome  do Aluno '``
    and ``'nome do aluno'`` compare equal.
    """
    if col_name is None or (not isinstance(col_name, str) and pd.isna(col_name)):
        return ""
    normalized = unicodedata.normalize("NFD", str(col_name).strip().lower())
    normalized = "".join(ch for ch in normalized if not unicodedata.combining(ch))
    normalized = re.sub(r"\s+", " ", normalized)
    return normalized.strip()


def _find_column(
    columns: List[str],
    hints: Union[Tuple[str, ...], Pattern],
    exclude: Optional[str] = None
) -> Optional[str]:
    for col in columns:
        if col == exclude:
            continue
        normalized = normalize_col_name(col)
        if isinstance(hints, tuple):
            matched = any(hint in normalized for hint in hints)
        else:
            matched = hints.search(normalized) is not None
        if matched:
            return col
    return None


def detect_roster_columns(columns: List[str]) -> Dict[str, Optional[str]]:
    """
    Map roster fields to the spreadsheet's own column names.

    Args:
        columns: Column names as found in the sheet header

    Returns:
        Dict with 'name', 'email', 'class' and 'xp' keys; 'class' and 'xp'
        are None when the sheet has no such column

    Raises:
        ValueError: If the name or email column cannot be found
    """
    columns = [str(c) for c in columns]
    email_col = _find_column(columns, EMAIL_HINTS)
    name_col = _find_column(columns, NAME_HINTS, exclude=email_col)

    if name_col is None or email_col is None:
        raise ValueError(
            "Spreadsheet must contain 'Nome' and 'Email' columns "
            f"(detected columns: {', '.join(columns)})"
        )

    taken = {name_col, email_col}
    class_col = _find_column([c for c in columns if c not in taken], CLASS_HINTS)
    xp_col = _find_column([c for c in columns if c not in taken | {class_col}], XP_PATTERN)

    mapping = {"name": name_col, "email": email_col, "class": class_col, "xp": xp_col}
    logger.debug("Roster column mapping: %s", mapping)
    return mapping


def to_int(value) -> int:
    """Convert a cell value to int, treating blanks and garbage as 0."""
    if value is None:
        return 0
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return 0
    try:
        val = float(value)
    except (ValueError, TypeError):
        return 0
    if np.isnan(val) or np.isinf(val):
        return 0
    return int(val)


def _cell_text(value) -> str:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return ""
    return str(value).strip()


def load_table(file_bytes: bytes, filename: str) -> pd.DataFrame:
    """
    Load the first sheet of an .xlsx file, or a CSV file, into a DataFrame.

    Args:
        file_bytes: Raw bytes of the uploaded file
        filename: Original file name, used to pick the reader

    Returns:
        DataFrame with one row per spreadsheet row and blank cells as ''

    Raises:
        ValueError: If the extension is unsupported or the file cannot be read
    """
    lower_name = (filename or "").lower()
    if not lower_name.endswith(SUPPORTED_EXTENSIONS):
        raise ValueError(
            f"Invalid file type '{filename}'. Please upload an Excel (.xlsx) or CSV file"
        )

    if lower_name.endswith(CSV_EXTENSIONS):
        try:
            df = pd.read_csv(BytesIO(file_bytes), dtype=str, encoding="utf-8-sig")
        except UnicodeDecodeError:
            logger.warning("CSV '%s' is not UTF-8, retrying as latin-1", filename)
            df = pd.read_csv(BytesIO(file_bytes), dtype=str, encoding="latin-1")
        except pd.errors.EmptyDataError as e:
            raise ValueError("The spreadsheet is empty") from e
        except pd.errors.ParserError as e:
            raise ValueError(f"Could not parse CSV file: {e}") from e
    else:
        try:
            workbook = load_workbook(filename=BytesIO(file_bytes), read_only=True, data_only=True)
        except Exception as e:
            raise ValueError(f"Could not open Excel file: {e}") from e
        sheet_name = workbook.sheetnames[0]
        workbook.close()
        logger.info("Reading sheet '%s' from %s", sheet_name, filename)
        df = pd.read_excel(BytesIO(file_bytes), sheet_name=sheet_name, engine="openpyxl", dtype=str)

    df = df.replace([np.inf, -np.inf], np.nan).fillna("")
    logger.info("Loaded %d rows from %s", len(df), filename)
    return df


def parse_roster(df: pd.DataFrame) -> Tuple[List[Student], ImportSummary]:
    """
    Turn roster rows into students, collecting row-level errors.

    Rows with an empty name or email, or an email without '@', are skipped.
    Emails are lowercased and repeated emails keep the first row. Error
    messages use spreadsheet line numbers (header is line 1).

    Args:
        df: DataFrame returned by load_table

    Returns:
        Tuple of (students, summary)

    Raises:
        ValueError: If the sheet is empty or lacks the name/email columns
    """
    if df.empty:
        raise ValueError("The spreadsheet is empty")

    mapping = detect_roster_columns(list(df.columns))
    summary = ImportSummary()
    parsed: List[Tuple[int, Student]] = []

    for position, (_, row) in enumerate(df.iterrows()):
        line = position + 2
        summary.total += 1

        name = _cell_text(row.get(mapping["name"]))
        email = _cell_text(row.get(mapping["email"])).lower()
        class_name = _cell_text(row.get(mapping["class"])) if mapping["class"] else ""

        if not name or not email:
            summary.skipped += 1
            summary.errors.append(f"Linha {line}: Nome ou email vazio")
            continue

        if "@" not in email:
            summary.skipped += 1
            summary.errors.append(f"Linha {line}: Email inválido ({email})")
            continue

        xp = to_int(row.get(mapping["xp"])) if mapping["xp"] else 0
        parsed.append((line, Student(
            id=email,
            name=name,
            email=email,
            class_id=class_name or None,
            xp=max(xp, 0),
        )))

    unique = deduplicate_by(parsed, lambda entry: entry[1].email)
    kept_lines = {line for line, _ in unique}
    for line, student in parsed:
        if line not in kept_lines:
            summary.skipped += 1
            summary.errors.append(f"Linha {line}: Email {student.email} duplicado")

    students = [student for _, student in unique]
    summary.imported = len(students)

    if summary.errors:
        logger.warning("Roster import skipped %d of %d rows", summary.skipped, summary.total)
    logger.info("Roster import: %s", summary.model_dump(exclude={"errors"}))

    return students, summary
