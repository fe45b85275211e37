"""
Excel report generator for reconciliation sessions.
Creates a workbook with summary, match and unresolved sheets.
"""

from datetime import datetime
from pathlib import Path
from typing import Optional
import logging

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.worksheet.worksheet import Worksheet

from ..config import ReconConfig
from ..models.match import ConfidenceLevel, Match, MatchStatus
from ..models.session import SessionSummary
from ..models.transaction import LedgerTransaction, StatementTransaction
from ..utils.exceptions import ReportGenerationError

logger = logging.getLogger(__name__)

# Style definitions
HEADER_FILL = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True)
CONFIRMED_FILL = PatternFill(start_color="C6EFCE", end_color="C6EFCE", fill_type="solid")
SUGGESTED_FILL = PatternFill(start_color="FFEB9C", end_color="FFEB9C", fill_type="solid")
UNMATCHED_FILL = PatternFill(start_color="FFC7CE", end_color="FFC7CE", fill_type="solid")
THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)

STATUS_FILLS = {
    MatchStatus.CONFIRMED: CONFIRMED_FILL,
    MatchStatus.SUGGESTED: SUGGESTED_FILL,
}


class ExcelReportGenerator:
    """Generates Excel reports for one reconciliation session."""

    def __init__(self, config: ReconConfig):
        """
        Initialize the report generator.

        Args:
            config: Application configuration
        """
        self.config = config
        self.output_config = config.output.excel

    def default_filename(self, session_id: str, now: Optional[datetime] = None) -> str:
        now = now or datetime.now()
        return self.output_config.filename_template.format(
            session_id=session_id,
            date=now.strftime("%Y%m%d"),
            time=now.strftime("%H%M%S"),
        )

    def generate_report(
        self,
        summary: SessionSummary,
        matches: list[Match],
        statement_txns: dict[str, StatementTransaction],
        ledger_txns: dict[str, LedgerTransaction],
        output_path: Path,
    ) -> Path:
        """
        Generate the session report.

        Args:
            summary: Session summary
            matches: Every match of the session
            statement_txns: Statement transactions by id
            ledger_txns: Ledger transactions by id
            output_path: Path for output file

        Returns:
            Path to generated report

        Raises:
            ReportGenerationError: If the workbook cannot be built or saved
        """
        logger.info(f"Generating Excel report: {output_path}")

        try:
            wb = Workbook()

            # Remove default sheet
            if wb.active:
                wb.remove(wb.active)

            self._create_summary_sheet(wb, summary)
            self._create_matches_sheet(wb, matches, statement_txns, ledger_txns)
            self._create_unresolved_sheet(
                wb,
                "Unresolved Statement",
                [statement_txns[i] for i in summary.unresolved_statement_ids if i in statement_txns],
                extra_header="External Ref",
            )
            self._create_unresolved_sheet(
                wb,
                "Unresolved Ledger",
                [ledger_txns[i] for i in summary.unresolved_ledger_ids if i in ledger_txns],
            )

            output_path.parent.mkdir(parents=True, exist_ok=True)
            wb.save(output_path)
        except (OSError, ValueError, KeyError) as e:
            logger.error(f"Failed to generate report: {e}")
            raise ReportGenerationError(f"Failed to generate report {output_path}: {e}") from e

        logger.info(f"Report saved: {output_path}")
        return output_path

    def _create_summary_sheet(self, wb: Workbook, summary: SessionSummary) -> None:
        """Create the summary sheet with key metrics."""
        ws = wb.create_sheet("Summary")
        session = summary.session

        ws["A1"] = "Reconciliation Session Summary"
        ws["A1"].font = Font(size=16, bold=True)
        ws.merge_cells("A1:D1")

        ws["A3"] = "Session"
        ws["A3"].font = Font(bold=True)

        session_info = [
            ("Session ID:", session.id),
            ("Name:", session.name or ""),
            ("Account:", session.account_id),
            ("Period:", f"{session.period_start} to {session.period_end}"),
            ("Status:", session.status.value),
            ("Passes Run:", session.pass_count),
        ]

        row = 4
        for label, value in session_info:
            ws[f"A{row}"] = label
            ws[f"B{row}"] = value
            row += 1

        row += 1
        ws[f"A{row}"] = "Transaction Counts"
        ws[f"A{row}"].font = Font(bold=True)
        row += 1

        count_data = [
            ("Statement Transactions:", summary.statement_total),
            ("Ledger Transactions:", summary.ledger_total),
            ("Unresolved Statement:", len(summary.unresolved_statement_ids)),
            ("Unresolved Ledger:", len(summary.unresolved_ledger_ids)),
            ("Match Rate:", f"{summary.match_rate:.1f}%"),
            ("Session Confidence:", f"{summary.confidence:.2f}"),
            ("Partial Failures:", session.error_summary.count),
        ]
        for label, value in count_data:
            ws[f"A{row}"] = label
            ws[f"B{row}"] = value
            row += 1

        row += 1
        ws[f"A{row}"] = "Matches by Status"
        ws[f"A{row}"].font = Font(bold=True)
        row += 1
        for status, count in summary.matches_by_status.items():
            ws[f"A{row}"] = status
            ws[f"B{row}"] = count
            row += 1

        row += 1
        ws[f"A{row}"] = "Matches by Source"
        ws[f"A{row}"].font = Font(bold=True)
        row += 1
        for source, count in sorted(summary.matches_by_source.items()):
            ws[f"A{row}"] = source
            ws[f"B{row}"] = count
            row += 1

        if session.error_summary.samples:
            row += 1
            ws[f"A{row}"] = "Partial Failure Samples"
            ws[f"A{row}"].font = Font(bold=True)
            row += 1
            for failure in session.error_summary.samples:
                ws[f"A{row}"] = f"{failure.kind.value} (batch {failure.batch})"
                ws[f"B{row}"] = failure.message
                ws[f"B{row}"].alignment = Alignment(wrap_text=True)
                row += 1

        ws.column_dimensions["A"].width = 30
        ws.column_dimensions["B"].width = 50

    def _create_matches_sheet(
        self,
        wb: Workbook,
        matches: list[Match],
        statement_txns: dict[str, StatementTransaction],
        ledger_txns: dict[str, LedgerTransaction],
    ) -> None:
        """Create the matches sheet, one row per match with both sides."""
        ws = wb.create_sheet("Matches")

        headers = [
            "Match ID",
            "Status",
            "Source",
            "Confidence",
            "Level",
            "Statement Date",
            "Statement Amount",
            "Statement Description",
            "Ledger Date",
            "Ledger Amount",
            "Ledger Description",
            "Reason",
            "Resolved By",
            "Resolved At",
        ]
        self._write_headers(ws, headers)

        for row_num, match in enumerate(matches, start=2):
            stmt = statement_txns.get(match.statement_txn_id)
            ledger = ledger_txns.get(match.ledger_txn_id)
            level: ConfidenceLevel = match.confidence_level

            row_data = [
                match.id,
                match.status.value,
                match.source.label(),
                round(match.confidence, 4),
                level.value,
                stmt.date if stmt else match.statement_txn_id,
                float(stmt.amount) if stmt else "",
                stmt.description if stmt else "",
                ledger.date if ledger else match.ledger_txn_id,
                float(ledger.amount) if ledger else "",
                ledger.description if ledger else "",
                match.reason,
                match.resolved_by or "",
                match.resolved_at.strftime("%Y-%m-%d %H:%M:%S") if match.resolved_at else "",
            ]

            fill = STATUS_FILLS.get(match.status)
            for col, value in enumerate(row_data, start=1):
                cell = ws.cell(row=row_num, column=col, value=value)
                cell.border = THIN_BORDER
                if fill is not None:
                    cell.fill = fill

        self._auto_fit_columns(ws)

    def _create_unresolved_sheet(
        self,
        wb: Workbook,
        sheet_name: str,
        transactions: list,
        extra_header: Optional[str] = None,
    ) -> None:
        """Create a sheet listing transactions nobody matched."""
        ws = wb.create_sheet(sheet_name)

        headers = ["ID", "Date", "Amount", "Description"]
        if extra_header:
            headers.append(extra_header)
        self._write_headers(ws, headers)

        for row_num, txn in enumerate(transactions, start=2):
            row_data = [txn.id, txn.date, float(txn.amount), txn.description]
            if extra_header:
                row_data.append(getattr(txn, "external_ref", None) or "")

            for col, value in enumerate(row_data, start=1):
                cell = ws.cell(row=row_num, column=col, value=value)
                cell.border = THIN_BORDER
                cell.fill = UNMATCHED_FILL

        self._auto_fit_columns(ws)

    @staticmethod
    def _write_headers(ws: Worksheet, headers: list[str]) -> None:
        for col, header in enumerate(headers, start=1):
            cell = ws.cell(row=1, column=col, value=header)
            cell.fill = HEADER_FILL
            cell.font = HEADER_FONT
            cell.border = THIN_BORDER

    def _auto_fit_columns(self, ws: Worksheet) -> None:
        """Auto-fit column widths based on content."""
        for column_cells in ws.columns:
            max_length = 0
            column = column_cells[0].column_letter

            for cell in column_cells:
                if cell.value is not None:
                    max_length = max(max_length, len(str(cell.value)))

            ws.column_dimensions[column].width = min(max_length + 2, 50)
