"""
Export service for ledger data.

Provides JSON backup files plus CSV and XLSX exports of the ledger
collections.
"""

import csv
import io
import logging
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union, cast

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from biztrack.config import BACKUP_FILENAME_PREFIX
from biztrack.models import COLLECTIONS, Ledger, get_collection_spec
from biztrack.sync import SyncController

logger = logging.getLogger(__name__)

# Sheet titles for each collection
SHEET_TITLES = {
    "sales": "Sales",
    "inventory": "Inventory",
    "expenses": "Expenses",
    "suppliers": "Suppliers",
    "customers": "Customers",
    "returns": "Returns",
}

# JSON fields shown with a money format in XLSX sheets
MONEY_FIELDS = {
    "unitPrice",
    "subtotal",
    "tax",
    "total",
    "paid",
    "balance",
    "grossProfit",
    "costPrice",
    "sellPrice",
    "owed",
    "billed",
    "amount",
    "refund",
}


class ExportFormat(str, Enum):
    """Supported export formats."""

    JSON = "json"
    CSV = "csv"
    XLSX = "xlsx"


class ExportService:
    """Service for exporting ledger data to various formats."""

    def __init__(self, controller: SyncController):
        """
        Initialize the export service.

        Args:
            controller: Sync controller owning the ledger
        """
        self.controller = controller

    @property
    def ledger(self) -> Ledger:
        return self.controller.ledger

    # =========================================================================
    # JSON backups
    # =========================================================================

    def backup_filename(self, today: Optional[date] = None) -> str:
        """Filename for a dated JSON backup, e.g. biztrack_backup_2024-05-01.json."""
        today = today or date.today()
        return f"{BACKUP_FILENAME_PREFIX}{today.isoformat()}.json"

    def write_backup(self, directory: Union[Path, str], today: Optional[date] = None) -> Path:
        """
        Write the exported ledger to a dated backup file.

        Args:
            directory: Directory to write into (created if missing)
            today: Date used in the filename

        Returns:
            Path of the written file
        """
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / self.backup_filename(today)
        path.write_text(self.controller.export_ledger(), encoding="utf-8")
        logger.info(f"Backup written to {path}")
        return path

    @staticmethod
    def read_backup(path: Union[Path, str]) -> str:
        """Read a backup file as UTF-8 text, ready for import_ledger()."""
        return Path(path).read_text(encoding="utf-8")

    # =========================================================================
    # Spreadsheets
    # =========================================================================

    def _table(self, collection: str) -> tuple[list[str], list[list[Any]]]:
        """
        Headers and rows for one collection.

        Headers are the schema fields followed by any extra fields found on
        the records, in first-seen order.
        """
        spec = get_collection_spec(collection)
        records = [record.to_dict() for record in self.ledger.collection(collection)]

        headers = spec.record_type.json_fields()
        for record in records:
            for key in record:
                if key not in headers:
                    headers.append(key)

        rows = [[self._cell_value(record.get(h)) for h in headers] for record in records]
        return headers, rows

    @staticmethod
    def _cell_value(value: Any) -> Any:
        """Nested values are written as their text form."""
        if isinstance(value, (dict, list)):
            return str(value)
        return value

    def export_to_csv(self, collection: str) -> io.BytesIO:
        """
        Export one collection to CSV format.

        Args:
            collection: Collection name, e.g. "sales"

        Returns:
            BytesIO buffer containing the CSV data
        """
        headers, rows = self._table(collection)

        buffer = io.BytesIO()
        text_buffer = io.StringIO()

        writer = csv.writer(text_buffer)
        writer.writerow(headers)
        for row in rows:
            writer.writerow(["" if value is None else value for value in row])

        # Convert to bytes
        buffer.write(text_buffer.getvalue().encode("utf-8-sig"))  # BOM for Excel
        buffer.seek(0)

        return buffer

    def export_to_xlsx(self) -> io.BytesIO:
        """
        Export the whole ledger to XLSX format with formatting.

        The workbook has a Settings sheet, one sheet per collection and a
        Summary sheet.

        Returns:
            BytesIO buffer containing the XLSX data
        """
        wb = Workbook()
        ws = cast(Worksheet, wb.active)
        ws.title = "Settings"
        self._fill_settings_sheet(ws)

        for spec in COLLECTIONS:
            sheet = wb.create_sheet(title=SHEET_TITLES[spec.name])
            self._fill_collection_sheet(sheet, spec.name)

        self._add_summary_sheet(wb)

        # Save to buffer
        buffer = io.BytesIO()
        wb.save(buffer)
        buffer.seek(0)

        return buffer

    def _fill_settings_sheet(self, ws: Worksheet):
        header_font = Font(bold=True)
        ws.cell(row=1, column=1, value="Setting").font = header_font
        ws.cell(row=1, column=2, value="Value").font = header_font

        for row_idx, (key, value) in enumerate(self.ledger.settings.to_dict().items(), 2):
            ws.cell(row=row_idx, column=1, value=key)
            ws.cell(row=row_idx, column=2, value=self._cell_value(value))

        ws.column_dimensions["A"].width = 18
        ws.column_dimensions["B"].width = 32

    def _fill_collection_sheet(self, ws: Worksheet, collection: str):
        headers, rows = self._table(collection)

        # Define styles
        header_font = Font(bold=True, color="FFFFFF")
        header_fill = PatternFill(
            start_color="4472C4", end_color="4472C4", fill_type="solid"
        )

        for col, header in enumerate(headers, 1):
            cell = ws.cell(row=1, column=col, value=header)
            cell.font = header_font
            cell.fill = header_fill
            cell.alignment = Alignment(horizontal="center")

        for row_idx, row in enumerate(rows, 2):
            for col, value in enumerate(row, 1):
                cell = ws.cell(row=row_idx, column=col, value=value)
                if headers[col - 1] in MONEY_FIELDS:
                    cell.number_format = "#,##0.00"

        for col, header in enumerate(headers, 1):
            ws.column_dimensions[get_column_letter(col)].width = max(10, len(header) + 4)

        # Freeze header row
        ws.freeze_panes = "A2"

    def _add_summary_sheet(self, wb: Workbook):
        """Add a summary sheet to the workbook."""
        ws = wb.create_sheet(title="Summary")
        currency = self.ledger.settings.currency

        # Styles
        header_font = Font(bold=True)
        title_font = Font(bold=True, size=14)

        # Title
        ws.cell(row=1, column=1, value=self.ledger.settings.biz_name).font = title_font
        ws.cell(
            row=2,
            column=1,
            value=f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M')}",
        )

        # Record counts
        ws.cell(row=4, column=1, value="Collection").font = header_font
        ws.cell(row=4, column=2, value="Records").font = header_font
        row = 5
        for name, count in self.ledger.counts().items():
            ws.cell(row=row, column=1, value=SHEET_TITLES[name])
            ws.cell(row=row, column=2, value=count)
            row += 1

        # Totals
        row += 1
        ws.cell(row=row, column=1, value="Totals").font = header_font
        ws.cell(row=row, column=2, value=currency).font = header_font
        for label, value in self.totals().items():
            row += 1
            ws.cell(row=row, column=1, value=label)
            ws.cell(row=row, column=2, value=value).number_format = "#,##0.00"

        # Column widths
        ws.column_dimensions["A"].width = 20
        ws.column_dimensions["B"].width = 18

    def totals(self) -> dict[str, float]:
        """Headline money totals shown on the summary sheet."""
        return {
            "Sales": sum(s.total or 0 for s in self.ledger.sales),
            "Collected": sum(s.paid or 0 for s in self.ledger.sales),
            "Expenses": sum(e.amount or 0 for e in self.ledger.expenses),
            "Refunds": sum(r.refund or 0 for r in self.ledger.returns),
        }

    def get_filename(
        self,
        format: ExportFormat,
        collection: Optional[str] = None,
        today: Optional[date] = None,
    ) -> str:
        """
        Generate a filename for the export.

        Args:
            format: Export format
            collection: Collection name for CSV exports
            today: Date used in the filename

        Returns:
            Suggested filename
        """
        if format is ExportFormat.JSON:
            return self.backup_filename(today)

        date_str = (today or date.today()).strftime("%Y%m%d")
        name = f"_{collection}" if collection else ""
        return f"biztrack{name}_{date_str}.{format.value}"
