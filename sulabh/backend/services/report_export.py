from __future__ import annotations

import datetime as dt

import pandas as pd
from jinja2 import Environment, select_autoescape

EXPORT_TYPES = ("complaints", "escalation")
EXPORT_FORMATS = ("csv", "pdf")

# (header, row -> cell) per report type, in column order.
_COLUMNS = {
    "complaints": [
        ("ID", lambda r: r["id"]),
        ("Subject", lambda r: r["subject"]),
        ("Category", lambda r: r["category"]),
        ("Priority", lambda r: r["priority"]),
        ("Status", lambda r: r["status"]),
        ("Submitted At", lambda r: _date(r["submittedAt"])),
        ("Department", lambda r: r["assignedDepartment"]),
        ("Resolution Time", lambda r: f"{r['resolutionTime']} days" if r.get("resolutionTime") is not None else "N/A"),
    ],
    "escalation": [
        ("Complaint ID", lambda r: r["complaintId"]),
        ("Subject", lambda r: r["subject"]),
        ("Category", lambda r: r["category"]),
        ("Priority", lambda r: r["priority"]),
        ("Days Pending", lambda r: r["daysPending"]),
        ("Department", lambda r: r["assignedDepartment"]),
        ("Escalation Reason", lambda r: r["escalationReason"]),
    ],
}

_PRINT_TEMPLATE = """<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8">
    <title>SULABH {{ title }} Report</title>
    <style>
      body { font-family: Arial, sans-serif; margin: 20px; }
      table { width: 100%; border-collapse: collapse; margin-top: 20px; }
      th, td { border: 1px solid #ddd; padding: 8px; text-align: left; }
      th { background-color: #f2f2f2; }
      .header { text-align: center; margin-bottom: 30px; }
      @media print { .header { margin-bottom: 10px; } }
    </style>
  </head>
  <body onload="window.print()">
    <div class="header">
      <h1>SULABH - Online Grievance Redressal System</h1>
      <h2>{{ title }} Report</h2>
      <p>Generated on: {{ generated_on }}</p>
    </div>
    <table>
      <thead>
        <tr>{% for h in headers %}<th>{{ h }}</th>{% endfor %}</tr>
      </thead>
      <tbody>
        {% for row in rows %}
        <tr>{% for cell in row %}<td>{{ cell }}</td>{% endfor %}</tr>
        {% endfor %}
      </tbody>
    </table>
  </body>
</html>
"""

_env = Environment(autoescape=select_autoescape(default_for_string=True))


def _date(iso: str | None) -> str:
    if not iso:
        return ""
    return dt.datetime.fromisoformat(iso).date().isoformat()


def to_frame(report_type: str, rows: list[dict]) -> pd.DataFrame:
    if report_type not in _COLUMNS:
        raise ValueError(f"report_type must be one of {'/'.join(EXPORT_TYPES)}")
    cols = _COLUMNS[report_type]
    return pd.DataFrame([[fn(r) for _, fn in cols] for r in rows], columns=[h for h, _ in cols])


def export_filename(report_type: str, fmt: str, today: dt.date | None = None) -> str:
    ext = "csv" if fmt == "csv" else "html"
    return f"{report_type}_report_{(today or dt.date.today()).isoformat()}.{ext}"


def export_csv(report_type: str, rows: list[dict]) -> str:
    return to_frame(report_type, rows).to_csv(index=False)


def export_printable(report_type: str, rows: list[dict], today: dt.date | None = None) -> str:
    """Print-ready HTML; the browser's print dialog produces the PDF."""
    df = to_frame(report_type, rows)
    return _env.from_string(_PRINT_TEMPLATE).render(
        title=report_type.upper(),
        generated_on=(today or dt.date.today()).isoformat(),
        headers=list(df.columns),
        rows=df.values.tolist(),
    )
