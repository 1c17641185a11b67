"""Spreadsheet export of PBI listings."""

from __future__ import annotations

import io
import re
from datetime import date, datetime
from typing import Iterable, Optional

from openpyxl import Workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter

SHEET_TITLE = "Product Backlog Items"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

# (header, column width in characters)
COLUMNS = [
    ("No.", 5),
    ("Title", 30),
    ("Priority", 10),
    ("Story Points", 12),
    ("PIC", 15),
    ("Epic", 20),
    ("Business Value", 40),
    ("User Story", 50),
    ("Acceptance Criteria", 50),
    ("Notes", 30),
    ("Created Date", 12),
    ("Updated Date", 12),
]


def export_filename(backlog_title: str, today: Optional[date] = None) -> str:
    """`My Backlog!` exported on 2024-05-01 -> `My_Backlog__PBIs_2024-05-01.xlsx`."""
    today = today or date.today()
    safe = re.sub(r"[^a-zA-Z0-9]", "_", backlog_title)
    return f"{safe}_PBIs_{today.isoformat()}.xlsx"


def _format_date(value) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value) if value is not None else ""


def _clean(value):
    # worksheets reject most C0 control characters
    if isinstance(value, str):
        return ILLEGAL_CHARACTERS_RE.sub("", value)
    return value


def _row(index: int, pbi: dict) -> list:
    return [
        index,
        pbi.get("title"),
        pbi.get("priority"),
        pbi.get("storyPoint"),
        pbi.get("pic"),
        pbi.get("epicTitle") or "No Epic",
        pbi.get("businessValue"),
        pbi.get("userStory"),
        pbi.get("acceptanceCriteria"),
        pbi.get("notes") or "",
        _format_date(pbi.get("createdAt")),
        _format_date(pbi.get("updatedAt")),
    ]


def build_workbook(pbis: Iterable[dict]) -> Workbook:
    """Write one header row plus one row per PBI, keeping the given order."""
    wb = Workbook()
    ws = wb.active
    ws.title = SHEET_TITLE
    ws.append([header for header, _ in COLUMNS])
    for cell in ws[1]:
        cell.font = Font(bold=True)
    for i, pbi in enumerate(pbis, start=1):
        values = [_clean(v) for v in _row(i, pbi)]
        ws.append(values)
        # user text is data, never a formula
        for cell, value in zip(ws[ws.max_row], values):
            if isinstance(value, str):
                cell.data_type = "s"
    for col, (_, width) in enumerate(COLUMNS, start=1):
        ws.column_dimensions[get_column_letter(col)].width = width
    return wb


def workbook_bytes(wb: Workbook) -> bytes:
    bio = io.BytesIO()
    wb.save(bio)
    return bio.getvalue()
