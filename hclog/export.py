"""Spreadsheet export, printable-report HTML and shared date formatting for the record list."""
# hclog/export.py

from datetime import datetime
from html import escape
from io import BytesIO

import pandas as pd
from openpyxl.styles import Font, PatternFill

from hclog import config
from hclog.models import STATUS_RETURNED, parse_local_datetime

SHEET_NAME = "Historias Clínicas"
EMPTY_CELL = "—"

SPREADSHEET_COLUMNS = [
    "N° H.C.",
    "Servicio de Destino",
    "Responsable",
    "Celular",
    "Fecha de Préstamo",
    "Fecha de Devolución",
    "Recepcionado por",
    "Estado",
]

REPORT_COLUMNS = [
    "N° H.C.",
    "Servicio",
    "Responsable",
    "Celular",
    "F. Préstamo",
    "F. Devolución",
    "Recepcionado por",
    "Estado",
]


def format_datetime(value) -> str:
    """Formats a stored date as DD/MM/YYYY HH:mm.

    Returns "Pendiente" for missing dates and "Fecha inválida" when the value
    cannot be parsed. Timezone-aware values are shown in local time.
    """
    if not value:
        return "Pendiente"
    moment = value if isinstance(value, datetime) else parse_local_datetime(value)
    if moment is None:
        return "Fecha inválida"
    if moment.tzinfo is not None:
        moment = moment.astimezone()
    return moment.strftime("%d/%m/%Y %H:%M")


def records_dataframe(records) -> pd.DataFrame:
    """Builds the spreadsheet view of the records, one row per record."""
    rows = [
        {
            "N° H.C.": rec.hc_number,
            "Servicio de Destino": rec.destination_service,
            "Responsable": rec.responsible,
            "Celular": rec.responsible_phone_number,
            "Fecha de Préstamo": format_datetime(rec.request_date),
            "Fecha de Devolución": format_datetime(rec.return_date),
            "Recepcionado por": rec.receiving_staff_name if rec.status == STATUS_RETURNED else EMPTY_CELL,
            "Estado": rec.status,
        }
        for rec in records
    ]
    return pd.DataFrame(rows, columns=SPREADSHEET_COLUMNS)


def report_rows(records) -> list:
    """Rows for the printable report, in REPORT_COLUMNS order."""
    return [
        [
            rec.hc_number,
            rec.destination_service,
            rec.responsible,
            rec.responsible_phone_number,
            format_datetime(rec.request_date),
            format_datetime(rec.return_date),
            rec.receiving_staff_name or EMPTY_CELL,
            rec.status,
        ]
        for rec in records
    ]


def export_records_xlsx(records) -> BytesIO:
    """Exports records to an Excel workbook.

    Returns a BytesIO containing the .xlsx file.
    """
    df = records_dataframe(records)
    buffer = BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        df.to_excel(writer, sheet_name=SHEET_NAME, index=False)
        ws = writer.sheets[SHEET_NAME]
        header_font = Font(bold=True, color="FFFFFF")
        header_fill = PatternFill(start_color="005A9C", end_color="005A9C", fill_type="solid")
        for cell in ws[1]:
            cell.font = header_font
            cell.fill = header_fill
        # Auto-size columns
        for column_cells in ws.columns:
            max_length = max(len(str(cell.value or "")) for cell in column_cells)
            ws.column_dimensions[column_cells[0].column_letter].width = min(max_length + 2, 50)
    buffer.seek(0)
    return buffer


REPORT_CSS = """
@page { size: A4 landscape; margin: 12mm;
        @bottom-right { content: "Página " counter(page) " de " counter(pages); font-size: 8pt; } }
body { font-family: sans-serif; font-size: 7.5pt; }
h1 { font-size: 12pt; margin: 0 0 4mm 0; }
table { width: 100%; border-collapse: collapse; }
thead { display: table-header-group; }
th { background: #005A9C; color: #fff; text-align: left; padding: 3px; }
td { padding: 3px; border-bottom: 1px solid #ddd; }
tr:nth-child(even) td { background: #f2f2f2; }
tr { page-break-inside: avoid; }
"""


def build_report_html(records, generated_at=None) -> str:
    """Renders the printable report as a standalone HTML document.

    The table header repeats on every printed page; an empty selection still
    produces a one-row table saying so.
    """
    generated_at = generated_at or datetime.now()
    title = f"Reporte de {config.APP_TITLE} - {config.HOSPITAL_NAME}"
    head = "".join(f"<th>{escape(col)}</th>" for col in REPORT_COLUMNS)
    body = "".join(
        "<tr>" + "".join(f"<td>{escape(str(value))}</td>" for value in row) + "</tr>"
        for row in report_rows(records)
    )
    if not body:
        body = f'<tr><td colspan="{len(REPORT_COLUMNS)}">No hay registros que coincidan con los filtros.</td></tr>'
    return (
        "<!DOCTYPE html><html><head><meta charset='utf-8'>"
        f"<title>{escape(title)}</title><style>{REPORT_CSS}</style></head><body>"
        f"<h1>{escape(title)}</h1>"
        f"<p>Generado el {generated_at.strftime('%d/%m/%Y %H:%M')}</p>"
        f"<table><thead><tr>{head}</tr></thead><tbody>{body}</tbody></table>"
        "</body></html>"
    )
