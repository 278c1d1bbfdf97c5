"""PDF generation for the printable loan report."""
# hclog/pdf.py

from weasyprint import HTML

from hclog.export import build_report_html


def generate_records_pdf(records, generated_at=None) -> bytes:
    """Generate the paginated loan report PDF.

    Args:
        records: Records to list, already filtered and sorted for display.
        generated_at: Timestamp printed under the title (optional)

    Returns:
        bytes: PDF file content
    """
    return HTML(string=build_report_html(records, generated_at)).write_pdf()
