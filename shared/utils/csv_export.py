"""
shared/utils/csv_export.py
CSV attachments for admin exports.
"""

import csv
import io
from datetime import date
from typing import Any, Iterable, Sequence

from fastapi import Response


def _cell(value: Any) -> Any:
    if value is None:
        return ""
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if hasattr(value, "value"):  # enums
        return value.value
    return value


def to_csv(header: Sequence[str], rows: Iterable[Sequence[Any]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(header)
    for row in rows:
        writer.writerow([_cell(value) for value in row])
    return buffer.getvalue()


def csv_response(resource: str, header: Sequence[str], rows: Iterable[Sequence[Any]]) -> Response:
    """Attachment named `<resource>-YYYY-MM-DD.csv`."""
    filename = f"{resource}-{date.today().isoformat()}.csv"
    return Response(
        content=to_csv(header, rows),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
