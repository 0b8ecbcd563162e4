# holdback/printing.py - Printable HTML reports

import html
from typing import Iterable, List, Optional
from datetime import date

from holdback.models import EquipmentGroup, QuotedProject, Section
from holdback.quoted_projects import days_left

REPORT_STYLE = """
    body {
      font-family: Arial, sans-serif;
      line-height: 1.6;
      color: #333;
      max-width: 1200px;
      margin: 0 auto;
      padding: 20px;
    }
    .section-container {
      page-break-inside: avoid;
      margin-bottom: 30px;
    }
    h1 {
      color: #2c3e50;
      border-bottom: 2px solid #3498db;
      padding-bottom: 10px;
      margin-top: 30px;
      margin-bottom: 10px;
    }
    table {
      border-collapse: collapse;
      width: 100%;
      box-shadow: 0 2px 3px rgba(0,0,0,0.1);
    }
    th, td {
      border: 1px solid #ddd;
      padding: 12px;
      text-align: left;
    }
    th {
      background-color: #f2f2f2;
      font-weight: bold;
      color: #2c3e50;
    }
    tr:nth-child(even) {
      background-color: #f9f9f9;
    }
    @media print {
      body {
        padding: 0;
        max-width: none;
      }
      .section-container {
        break-inside: avoid;
      }
    }
"""

SINGLE_SECTION_STYLE = """
    body { font-family: Arial, sans-serif; }
    table { border-collapse: collapse; width: 100%; }
    th, td { border: 1px solid black; padding: 8px; text-align: left; }
    th { background-color: #f2f2f2; }
"""


def _esc(value) -> str:
    return html.escape("" if value is None else str(value), quote=True)


def _document(title: str, style: str, body: str) -> str:
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{_esc(title)}</title>
  <style>{style}</style>
</head>
<body>
{body}
</body>
</html>
"""


def _table(headers: Iterable[str], rows: Iterable[Iterable[str]]) -> str:
    head_cells = "".join(f"<th>{_esc(h)}</th>" for h in headers)
    body_rows = "".join(
        "<tr>" + "".join(f"<td>{_esc(v)}</td>" for v in row) + "</tr>"
        for row in rows
    )
    return f"<table><thead><tr>{head_cells}</tr></thead><tbody>{body_rows}</tbody></table>"


def section_report(section: Section) -> str:
    """One section, upper-cased for the printed sheet"""
    headers = [column.name.upper() for column in section.table.columns]
    rows = [[cell.value.upper() for cell in row] for row in section.table.rows]
    body = f"<h1>{_esc(section.header)}</h1>\n{_table(headers, rows)}"
    return _document(section.header, SINGLE_SECTION_STYLE, body)


def sections_report(title: str, sections: List[Section]) -> str:
    parts = []
    for section in sections:
        headers = [column.name for column in section.table.columns]
        rows = [[cell.value for cell in row] for row in section.table.rows]
        parts.append(
            f'<div class="section-container">\n<h1>{_esc(section.header)}</h1>\n'
            f"{_table(headers, rows)}\n</div>"
        )
    return _document(title, REPORT_STYLE, "\n".join(parts))


def equipment_report(groups: Iterable[EquipmentGroup], title: str = "Equipment") -> str:
    parts = []
    for group in groups:
        headers = [column.name for column in group.columns]
        rows = [[cell.value for cell in row.cells] for row in group.rows]
        parts.append(
            f'<div class="section-container">\n<h1>{_esc(group.type.name)}</h1>\n'
            f"{_table(headers, rows)}\n</div>"
        )
    return _document(title, REPORT_STYLE, "\n".join(parts))


def quoted_projects_report(projects: Iterable[QuotedProject], today: Optional[date] = None) -> str:
    headers = ["Quotation Ref", "Name of Project", "Location", "Closing Date", "Closing Time", "Days Left"]
    rows = []
    for project in projects:
        remaining = days_left(project, today)
        rows.append([
            project.quotation_ref,
            project.name,
            project.location,
            project.closing_date.isoformat() if project.closing_date else "",
            project.closing_time,
            "" if remaining is None else remaining,
        ])
    body = f'<div class="section-container">\n<h1>Quoted Projects</h1>\n{_table(headers, rows)}\n</div>'
    return _document("Quoted Projects", REPORT_STYLE, body)
