#!/usr/bin/env python3
"""
M365 Reports - License Report Generator

Renders the license report JSON written by license_report.py as:
- An Excel workbook (Summary, User Licenses, one sheet per cost dimension,
  Product Usage)
- A standalone HTML page, also used as the body of the report email

Rows are highlighted when a user holds duplicate licenses (amber), has not
signed in within the inactivity window (red) or is disabled (grey).

Usage:
    python3 scripts/generate_license_report.py --report license_report_20260101_120000.json
    python3 scripts/generate_license_report.py --report report.json --xlsx out.xlsx --html out.html
"""
from __future__ import annotations

import argparse
import html
import json
import os
import sys
from typing import Any

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

# Add repo root to path for tenantlib
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from tenantlib.constants import (  # noqa: E402
    ACCOUNT_DISABLED,
    ACTIVITY_ACTIVE,
    DEFAULT_CURRENCY,
    DIMENSION_LABELS,
    NOT_APPLICABLE,
)
from tenantlib.costs import CURRENCY_SYMBOLS  # noqa: E402


# =============================================================================
# CONSTANTS AND STYLING
# =============================================================================

HEADER_FILL = PatternFill(start_color="1F4E79", end_color="1F4E79", fill_type="solid")
DUPLICATE_FILL = PatternFill(start_color="FFEB9C", end_color="FFEB9C", fill_type="solid")
INACTIVE_FILL = PatternFill(start_color="FFC7CE", end_color="FFC7CE", fill_type="solid")
DISABLED_FILL = PatternFill(start_color="D9D9D9", end_color="D9D9D9", fill_type="solid")
TITLE_FONT = Font(name="Calibri", size=18, bold=True, color="1F4E79")
HEADER_FONT = Font(name="Calibri", size=11, bold=True, color="FFFFFF")
SECTION_FONT = Font(size=12, bold=True, color="1F4E79")
THIN_BORDER = Border(
    left=Side(style='thin'), right=Side(style='thin'),
    top=Side(style='thin'), bottom=Side(style='thin')
)

# HTML highlight colours (same palette as the workbook fills)
HTML_DUPLICATE = "#FFEB9C"
HTML_INACTIVE = "#FFC7CE"
HTML_DISABLED = "#D9D9D9"

USER_COLUMNS = [
    ('display_name', 'Display Name', 25),
    ('user_principal_name', 'User Principal Name', 35),
    ('country', 'Country', 10),
    ('department', 'Department', 20),
    ('job_title', 'Job Title', 22),
    ('company', 'Company', 20),
    ('cost_center', 'Cost Center', 14),
    ('direct_licenses', 'Direct Licenses', 40),
    ('disabled_plans', 'Disabled Plans', 40),
    ('group_licenses', 'Group Licenses', 45),
    ('cost', 'Annual Cost', 14),
    ('last_license_change', 'Last License Change', 18),
    ('account_created', 'Account Created', 18),
    ('last_access', 'Last Access', 18),
    ('days_since_access', 'Days Since Access', 12),
    ('duplicate_warning', 'Duplicate Warning', 45),
    ('inactivity_status', 'Activity', 20),
    ('account_status', 'Account Status', 12),
]

PRODUCT_COLUMNS = [
    ('product', 'Product', 40),
    ('sku_part_number', 'SKU', 25),
    ('purchased_units', 'Purchased', 12),
    ('consumed_units', 'Assigned', 12),
    ('available_units', 'Available', 12),
    ('annual_unit_cost', 'Annual Unit Cost', 16),
    ('purchased_cost', 'Purchased Cost', 16),
    ('consumed_cost', 'Assigned Cost', 16),
]

BUCKET_COLUMNS = [
    ('key', None, 30),
    ('accounts', 'Accounts', 12),
    ('cost', 'Total Cost', 16),
    ('average_cost', 'Average Cost', 16),
]


# =============================================================================
# Data Loading
# =============================================================================

def load_json(filepath: str) -> dict[str, Any]:
    """Load JSON file."""
    with open(filepath, 'r', encoding='utf-8') as f:
        return json.load(f)


# =============================================================================
# Row classification
# =============================================================================

def is_duplicate(row: dict[str, Any]) -> bool:
    return bool(row.get('duplicate_warning')) and row.get('duplicate_warning') != NOT_APPLICABLE


def is_inactive(row: dict[str, Any]) -> bool:
    status = row.get('inactivity_status')
    return bool(status) and status != ACTIVITY_ACTIVE


def is_disabled(row: dict[str, Any]) -> bool:
    return row.get('account_status') == ACCOUNT_DISABLED


def currency_number_format(currency: str) -> str:
    """Excel number format for a currency, e.g. '"$"#,##0.00'."""
    code = (currency or DEFAULT_CURRENCY).upper()
    symbol = CURRENCY_SYMBOLS.get(code)
    if symbol:
        return f'"{symbol}"#,##0.00'
    return f'#,##0.00 "{code}"'


def summary_rows(summary: dict[str, Any]) -> list[tuple[str, Any]]:
    """Label/value pairs shown in the summary sheet, HTML header and console."""
    inactive = summary.get('inactive_accounts', {})
    disabled = summary.get('disabled_accounts', {})
    return [
        ("Licensed users", summary.get('licensed_users', 0)),
        ("Total purchased license cost", summary.get('total_purchased_cost', '')),
        ("Total assigned license cost", summary.get('total_assigned_cost', '')),
        ("Percent of purchased cost assigned", summary.get('percent_assigned', '')),
        ("Average cost per licensed user", summary.get('average_cost_per_user', '')),
        ("Accounts with duplicate licenses", summary.get('duplicate_accounts', 0)),
        ("Duplicate license instances", summary.get('duplicate_licenses', 0)),
        ("Group license assignment errors", summary.get('group_errors', 0)),
        ("Inactive accounts", f"{inactive.get('count', 0)} ({inactive.get('cost', '')})"),
        ("Disabled accounts", f"{disabled.get('count', 0)} ({disabled.get('cost', '')})"),
        ("Users skipped (processing errors)", summary.get('skipped_users', 0)),
    ]


# =============================================================================
# Excel
# =============================================================================

def _write_header(ws, row: int, headers: list[str]) -> None:
    for col, header in enumerate(headers, 1):
        cell = ws.cell(row=row, column=col, value=header)
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal='center', wrap_text=True)
        cell.border = THIN_BORDER


def create_summary_sheet(wb: Any, report: dict[str, Any]) -> None:
    """Create the Summary sheet with tenant-wide figures."""
    ws = wb.active
    ws.title = "Summary"

    meta = report.get('metadata', {})
    title = "Microsoft 365 License Report"
    if meta.get('org_name'):
        title += f" - {meta['org_name']}"
    ws['A1'] = title
    ws['A1'].font = TITLE_FONT
    ws.merge_cells('A1:D1')

    ws['A3'] = "Generated:"
    ws['B3'] = meta.get('generated_at', '')
    ws['A4'] = "Inactivity threshold:"
    ws['B4'] = f"{meta.get('inactive_days', '')} days"
    ws['A5'] = "Currency:"
    ws['B5'] = report.get('summary', {}).get('currency', DEFAULT_CURRENCY)
    for row in range(3, 6):
        ws[f'A{row}'].font = Font(bold=True)
        ws[f'A{row}'].alignment = Alignment(horizontal='right')

    ws['A7'] = "KEY METRICS"
    ws['A7'].font = SECTION_FONT

    _write_header(ws, 8, ['Metric', 'Value'])
    row = 9
    for label, value in summary_rows(report.get('summary', {})):
        ws.cell(row=row, column=1, value=label).border = THIN_BORDER
        value_cell = ws.cell(row=row, column=2, value=value)
        value_cell.border = THIN_BORDER
        value_cell.alignment = Alignment(horizontal='right')
        row += 1

    ws.column_dimensions['A'].width = 38
    ws.column_dimensions['B'].width = 22


def create_user_sheet(wb: Any, report: dict[str, Any]) -> None:
    """Create the per-user license sheet with highlighted rows."""
    ws = wb.create_sheet("User Licenses")
    users = report.get('users', [])
    money = currency_number_format(report.get('summary', {}).get('currency', DEFAULT_CURRENCY))

    _write_header(ws, 1, [label for _, label, _ in USER_COLUMNS])

    row = 2
    for user in users:
        fill = None
        if is_disabled(user):
            fill = DISABLED_FILL
        elif is_inactive(user):
            fill = INACTIVE_FILL

        for col, (key, _, _) in enumerate(USER_COLUMNS, 1):
            cell = ws.cell(row=row, column=col, value=user.get(key, ''))
            cell.border = THIN_BORDER
            if key == 'cost':
                cell.number_format = money
            if fill is not None:
                cell.fill = fill
            if key == 'duplicate_warning' and is_duplicate(user):
                cell.fill = DUPLICATE_FILL
        row += 1

    ws.freeze_panes = 'C2'
    if users:
        ws.auto_filter.ref = f"A1:{get_column_letter(len(USER_COLUMNS))}{row - 1}"
    for col, (_, _, width) in enumerate(USER_COLUMNS, 1):
        ws.column_dimensions[get_column_letter(col)].width = width


def create_dimension_sheet(wb: Any, report: dict[str, Any], dimension: str) -> None:
    """Create one cost roll-up sheet (by department, country, ...)."""
    label = DIMENSION_LABELS.get(dimension, dimension.replace('_', ' ').title())
    ws = wb.create_sheet(f"By {label}")
    money = currency_number_format(report.get('summary', {}).get('currency', DEFAULT_CURRENCY))

    ws['A1'] = f"License Cost by {label}"
    ws['A1'].font = TITLE_FONT
    ws.merge_cells('A1:D1')

    _write_header(ws, 3, [title or label for _, title, _ in BUCKET_COLUMNS])

    row = 4
    for bucket in report.get('aggregates', {}).get(dimension, []):
        ws.cell(row=row, column=1, value=bucket.get('key')).border = THIN_BORDER
        ws.cell(row=row, column=2, value=bucket.get('accounts')).border = THIN_BORDER
        cost_cell = ws.cell(row=row, column=3, value=bucket.get('cost_value'))
        cost_cell.number_format = money
        cost_cell.border = THIN_BORDER
        ws.cell(row=row, column=4, value=bucket.get('average_cost')).border = THIN_BORDER
        row += 1

    for col, (_, _, width) in enumerate(BUCKET_COLUMNS, 1):
        ws.column_dimensions[get_column_letter(col)].width = width


def create_product_sheet(wb: Any, report: dict[str, Any]) -> None:
    """Create the Product Usage sheet."""
    ws = wb.create_sheet("Product Usage")

    ws['A1'] = "Subscribed Products"
    ws['A1'].font = TITLE_FONT
    ws.merge_cells('A1:H1')

    _write_header(ws, 3, [label for _, label, _ in PRODUCT_COLUMNS])

    products = report.get('products', [])
    row = 4
    for product in products:
        for col, (key, _, _) in enumerate(PRODUCT_COLUMNS, 1):
            ws.cell(row=row, column=col, value=product.get(key, '')).border = THIN_BORDER
        # Flag products with unassigned seats
        if product.get('available_units', 0) > 0:
            ws.cell(row=row, column=5).fill = DUPLICATE_FILL
        row += 1

    if not products:
        ws['A4'] = "No current subscriptions"
        ws['A4'].font = Font(italic=True, color="666666")

    for col, (_, _, width) in enumerate(PRODUCT_COLUMNS, 1):
        ws.column_dimensions[get_column_letter(col)].width = width


def build_workbook(report: dict[str, Any]) -> Any:
    wb = Workbook()
    create_summary_sheet(wb, report)
    create_user_sheet(wb, report)
    for dimension in report.get('aggregates', {}):
        create_dimension_sheet(wb, report, dimension)
    create_product_sheet(wb, report)
    return wb


def generate_excel_report(report: dict[str, Any], output_path: str) -> str:
    """
    Write the license report workbook.

    Args:
        report: Report dict as produced by ``LicenseReport.to_dict()``
        output_path: Output Excel file path

    Returns:
        The path written
    """
    wb = build_workbook(report)
    wb.save(output_path)
    print(f"Wrote {output_path}")
    return output_path


# =============================================================================
# HTML
# =============================================================================

HTML_STYLE = """
body { font-family: Calibri, Arial, sans-serif; font-size: 13px; color: #222; }
h1 { color: #1F4E79; }
h2 { color: #1F4E79; margin-top: 28px; }
table { border-collapse: collapse; margin-bottom: 12px; }
th { background: #1F4E79; color: #FFFFFF; padding: 4px 8px; text-align: left; }
td { border: 1px solid #BFBFBF; padding: 3px 8px; vertical-align: top; }
td.num { text-align: right; }
.legend span { padding: 2px 8px; margin-right: 8px; }
"""


def _cell(value: Any, color: str | None = None, numeric: bool = False) -> str:
    attrs = ''
    if numeric:
        attrs += ' class="num"'
    if color:
        attrs += f' style="background-color:{color}"'
    return f"<td{attrs}>{html.escape(str(value))}</td>"


def _header(labels: list[str]) -> str:
    return "<tr>" + "".join(f"<th>{html.escape(label)}</th>" for label in labels) + "</tr>"


def _summary_table(summary: dict[str, Any]) -> str:
    rows = "".join(
        f"<tr><td>{html.escape(label)}</td>{_cell(value, numeric=True)}</tr>"
        for label, value in summary_rows(summary)
    )
    return f"<table>{_header(['Metric', 'Value'])}{rows}</table>"


def _user_table(users: list[dict[str, Any]]) -> str:
    # Formatted cost string instead of the numeric column
    html_columns = [('annual_cost', label, width) if key == 'cost' else (key, label, width)
                    for key, label, width in USER_COLUMNS]
    lines = [_header([label for _, label, _ in html_columns])]
    for user in users:
        cells = []
        for key, _, _ in html_columns:
            value = user.get(key, '')
            color = None
            if key == 'duplicate_warning' and is_duplicate(user):
                color = HTML_DUPLICATE
            elif key == 'inactivity_status' and is_inactive(user):
                color = HTML_INACTIVE
            elif key == 'account_status' and is_disabled(user):
                color = HTML_DISABLED
            cells.append(_cell(value, color, numeric=key in ('annual_cost', 'days_since_access')))
        lines.append("<tr>" + "".join(cells) + "</tr>")
    return "<table>" + "".join(lines) + "</table>"


def _bucket_table(rows: list[dict[str, Any]], label: str) -> str:
    lines = [_header([label, 'Accounts', 'Total Cost', 'Average Cost'])]
    for bucket in rows:
        lines.append(
            "<tr>"
            + _cell(bucket.get('key', ''))
            + _cell(bucket.get('accounts', 0), numeric=True)
            + _cell(bucket.get('cost', ''), numeric=True)
            + _cell(bucket.get('average_cost', ''), numeric=True)
            + "</tr>"
        )
    return "<table>" + "".join(lines) + "</table>"


def _product_table(products: list[dict[str, Any]]) -> str:
    lines = [_header([label for _, label, _ in PRODUCT_COLUMNS])]
    for product in products:
        lines.append("<tr>" + "".join(
            _cell(product.get(key, ''), numeric=i > 1) for i, (key, _, _) in enumerate(PRODUCT_COLUMNS)
        ) + "</tr>")
    return "<table>" + "".join(lines) + "</table>"


def render_html_report(report: dict[str, Any], include_users: bool = True) -> str:
    """
    Render the report as a standalone HTML document.

    Every value is HTML-escaped. ``include_users=False`` leaves out the
    per-user table (used for the email body when the full table is attached).
    """
    meta = report.get('metadata', {})
    summary = report.get('summary', {})
    title = "Microsoft 365 License Report"
    if meta.get('org_name'):
        title += f" - {meta['org_name']}"

    parts = [
        "<!DOCTYPE html>",
        "<html><head><meta charset=\"utf-8\">",
        f"<title>{html.escape(title)}</title>",
        f"<style>{HTML_STYLE}</style>",
        "</head><body>",
        f"<h1>{html.escape(title)}</h1>",
        f"<p>Generated {html.escape(str(meta.get('generated_at', '')))} &middot; "
        f"inactivity threshold {html.escape(str(meta.get('inactive_days', '')))} days</p>",
        "<h2>Summary</h2>",
        _summary_table(summary),
    ]

    for dimension, rows in report.get('aggregates', {}).items():
        label = DIMENSION_LABELS.get(dimension, dimension.replace('_', ' ').title())
        parts.append(f"<h2>Cost by {html.escape(label)}</h2>")
        parts.append(_bucket_table(rows, label))

    parts.append("<h2>Subscribed Products</h2>")
    parts.append(_product_table(report.get('products', [])))

    if include_users:
        parts.append("<h2>User Licenses</h2>")
        parts.append(
            '<p class="legend">'
            f'<span style="background-color:{HTML_DUPLICATE}">Duplicate licenses</span>'
            f'<span style="background-color:{HTML_INACTIVE}">Inactive</span>'
            f'<span style="background-color:{HTML_DISABLED}">Disabled</span></p>'
        )
        parts.append(_user_table(report.get('users', [])))

    parts.append("</body></html>")
    return "\n".join(parts)


def generate_html_report(report: dict[str, Any], output_path: str) -> str:
    with open(output_path, 'w', encoding='utf-8') as f:
        f.write(render_html_report(report))
    print(f"Wrote {output_path}")
    return output_path


def main() -> None:
    parser = argparse.ArgumentParser(
        description='Render Excel/HTML from a license_report.py JSON report',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python3 scripts/generate_license_report.py --report output/license_report_20260101_120000.json
  python3 scripts/generate_license_report.py --report report.json --xlsx licenses.xlsx --html licenses.html
"""
    )

    parser.add_argument('--report', '-r', required=True,
                        help='Path to license report JSON file (license_report_*.json)')
    parser.add_argument('--xlsx', default=None,
                        help='Output Excel file path (default: next to the report)')
    parser.add_argument('--html', default=None,
                        help='Output HTML file path (default: next to the report)')

    args = parser.parse_args()

    print(f"Loading report: {args.report}")
    report = load_json(args.report)

    base = os.path.splitext(args.report)[0]
    generate_excel_report(report, args.xlsx or f"{base}.xlsx")
    generate_html_report(report, args.html or f"{base}.html")


if __name__ == '__main__':
    main()
