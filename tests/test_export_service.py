"""
Tests for the recap export service
"""
import csv
import io

import pytest
from openpyxl import load_workbook

from ppid_bot.db.models import Recap, RecapStatus
from ppid_bot.domain.services.export_service import (
    RECAP_HEADERS,
    _sanitize_text,
    export_recaps_csv,
    export_recaps_xlsx,
)


def _recap(**overrides) -> Recap:
    data = {
        "chat_id": "6281234567890@s.whatsapp.net",
        "customer_name": "Budi",
        "summary": "Warga bertanya tentang layanan informasi publik",
        "category": "informasi",
        "rating": 5,
        "status": RecapStatus.HANDLED,
    }
    data.update(overrides)
    return Recap(**data)


class TestSanitizeText:
    """Formula injection protection"""

    @pytest.mark.unit
    @pytest.mark.parametrize("value", ["=SUM(A1:A10)", "+cmd|'/C calc'!A0", "-1+1", "@SUM(A1)", "\t=cmd"])
    def test_formula_prefix_is_quoted(self, value):
        assert _sanitize_text(value) == f"'{value}"

    @pytest.mark.unit
    def test_safe_text_unchanged(self):
        assert _sanitize_text("Pelayanan cepat") == "Pelayanan cepat"

    @pytest.mark.unit
    def test_empty_string(self):
        assert _sanitize_text("") == ""

    @pytest.mark.unit
    def test_non_string(self):
        """Non-strings are returned as-is"""
        assert _sanitize_text(4) == 4


class TestExportRecapsCsv:

    @pytest.mark.unit
    def test_header_and_row(self):
        rows = list(csv.reader(io.StringIO(export_recaps_csv([_recap()]))))

        assert rows[0] == RECAP_HEADERS
        assert rows[1][1] == "Budi"
        assert rows[1][3] == RecapStatus.HANDLED.value
        assert rows[1][4] == "5"
        assert rows[1][7] == "6281234567890@s.whatsapp.net"

    @pytest.mark.unit
    def test_every_field_quoted_and_quotes_doubled(self):
        """Commas and quotes in summaries survive a spreadsheet import"""
        content = export_recaps_csv([_recap(summary='Tanya "SKPD", lalu jadwal')])

        assert '"Tanya ""SKPD"", lalu jadwal"' in content
        assert content.splitlines()[0].startswith('"Timestamp"')

    @pytest.mark.unit
    def test_missing_rating_is_blank(self):
        rows = list(csv.reader(io.StringIO(export_recaps_csv([_recap(rating=None, status=RecapStatus.IN_PROGRESS)]))))
        assert rows[1][4] == ""

    @pytest.mark.unit
    def test_formula_in_summary_is_neutralized(self):
        rows = list(csv.reader(io.StringIO(export_recaps_csv([_recap(summary="=HYPERLINK(\"x\")")]))))
        assert rows[1][6].startswith("'=")

    @pytest.mark.unit
    def test_empty_export_has_header_only(self):
        assert export_recaps_csv([]).strip().count("\n") == 0


class TestExportRecapsXlsx:

    @pytest.mark.unit
    def test_workbook_layout(self):
        content = export_recaps_xlsx([_recap(), _recap(customer_name="Sari", rating=1, status=RecapStatus.ALERT)])
        ws = load_workbook(io.BytesIO(content)).active

        assert ws.title == "Rekap"
        assert ws.cell(row=1, column=1).value == "Rekap Percakapan PPID"
        assert [ws.cell(row=4, column=c).value for c in range(1, len(RECAP_HEADERS) + 1)] == RECAP_HEADERS
        assert ws.cell(row=5, column=2).value == "Budi"
        assert ws.cell(row=6, column=2).value == "Sari"
        assert ws.freeze_panes == "A5"

    @pytest.mark.unit
    def test_low_rating_rows_highlighted(self):
        content = export_recaps_xlsx([_recap(rating=2, status=RecapStatus.ALERT, evaluation="lambat")])
        ws = load_workbook(io.BytesIO(content)).active

        assert ws.cell(row=5, column=1).fill.start_color.rgb.endswith("FCE4D6")
        assert ws.cell(row=5, column=6).value == "lambat"
