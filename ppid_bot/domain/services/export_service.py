"""
Recap export - CSV for spreadsheets, formatted XLSX (openpyxl).
"""
import csv
import io
from datetime import datetime
from typing import Any

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from ppid_bot.db.models import Recap

RECAP_HEADERS = [
    "Timestamp",
    "Nama Customer",
    "Kategori",
    "Status",
    "Rating",
    "Evaluasi",
    "Ringkasan",
    "Chat ID",
]

_HEADER_FILL = PatternFill(start_color="1F4E79", end_color="1F4E79", fill_type="solid")
_HEADER_FONT = Font(name="Arial", bold=True, color="FFFFFF", size=11)
_TITLE_FONT = Font(name="Arial", bold=True, size=14)
_SUBTITLE_FONT = Font(name="Arial", size=10, color="666666")
_ALERT_FILL = PatternFill(start_color="FCE4D6", end_color="FCE4D6", fill_type="solid")
_THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)
_WRAP_ALIGN = Alignment(horizontal="left", vertical="top", wrap_text=True)

# Spreadsheet apps treat these leading characters as a formula
_FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")


def _sanitize_text(value: Any) -> Any:
    if isinstance(value, str) and value and value[0] in _FORMULA_PREFIXES:
        return f"'{value}"
    return value


def _recap_row(recap: Recap) -> list[Any]:
    return [
        recap.timestamp.isoformat(),
        _sanitize_text(recap.customer_name or ""),
        _sanitize_text(recap.category),
        recap.status.value,
        recap.rating if recap.rating is not None else "",
        _sanitize_text(recap.evaluation or ""),
        _sanitize_text(recap.summary),
        recap.chat_id,
    ]


def export_recaps_csv(recaps: list[Recap]) -> str:
    """Every field quoted; embedded quotes doubled."""
    output = io.StringIO()
    writer = csv.writer(output, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(RECAP_HEADERS)
    for recap in recaps:
        writer.writerow(_recap_row(recap))
    return output.getvalue()


def _auto_fit_columns(ws: Any) -> None:
    for col_cells in ws.columns:
        max_length = max((len(str(c.value)) for c in col_cells if c.value is not None), default=0)
        ws.column_dimensions[get_column_letter(col_cells[0].column)].width = min(max(max_length + 4, 10), 60)


def export_recaps_xlsx(recaps: list[Recap]) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Rekap"

    ws.cell(row=1, column=1, value="Rekap Percakapan PPID").font = _TITLE_FONT
    ws.cell(
        row=2, column=1, value=f"Dibuat: {datetime.now().strftime('%Y-%m-%d %H:%M')} | Total: {len(recaps)}"
    ).font = _SUBTITLE_FONT

    header_row = 4
    for col, header in enumerate(RECAP_HEADERS, 1):
        cell = ws.cell(row=header_row, column=col, value=header)
        cell.font = _HEADER_FONT
        cell.fill = _HEADER_FILL
        cell.border = _THIN_BORDER

    for i, recap in enumerate(recaps, 1):
        row = header_row + i
        for col, value in enumerate(_recap_row(recap), 1):
            cell = ws.cell(row=row, column=col, value=value)
            cell.alignment = _WRAP_ALIGN
            cell.border = _THIN_BORDER
            if recap.rating is not None and recap.rating <= 2:
                cell.fill = _ALERT_FILL

    _auto_fit_columns(ws)
    ws.freeze_panes = ws.cell(row=header_row + 1, column=1)

    output = io.BytesIO()
    wb.save(output)
    return output.getvalue()
