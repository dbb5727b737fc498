"""Read NPA workbooks into labelled rows and write the sample template."""

from __future__ import annotations

import io
import logging
import zipfile
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Sequence

from openpyxl import Workbook, load_workbook
from openpyxl.styles import Font
from openpyxl.utils.exceptions import InvalidFileException

from npatrack.errors import ValidationError

LOGGER = logging.getLogger(__name__)

EMPTY_LABEL = "__EMPTY"

TEMPLATE_TITLE = "Annexure-I"
TEMPLATE_LABELS: Sequence[str] = (
    "Sr No.",
    "Branch Name",
    "Cust Id",
    "A/c Number",
    "A/c Name",
    "Scheme Code",
    "Product Type",
    "Sanction Limit",
    "Date of NPA",
    "O/s Bal.",
    "Principal Overdue",
    "Interest Overdue",
    "Net Balance",
    "Provision",
    "Anomalies",
    "Asset Classification",
    "Asset Tagging Type",
    "Contact No.",
    "Communication Address",
)
TEMPLATE_SAMPLE_ROW: Sequence[Any] = (
    1,
    "Main Branch",
    "C001",
    "191467310000967",
    "John Doe",
    "PL001",
    "Personal Loan",
    800000,
    date(2024, 1, 15),
    711618.08,
    650000,
    61618.08,
    711618.08,
    "10%",
    "None",
    "NPA",
    "Type A",
    "9876543210",
    "Sample Address",
)


def column_labels(header: Iterable[Any]) -> List[str]:
    """Name header cells the way spreadsheet JSON exports do.

    Blank cells become ``__EMPTY``, ``__EMPTY_1``, ... and repeated labels get
    a ``_<n>`` suffix so every column has a distinct key.
    """

    labels: List[str] = []
    seen: Dict[str, int] = {}
    for cell in header:
        base = cell_text(cell) or EMPTY_LABEL
        count = seen.get(base, 0)
        seen[base] = count + 1
        labels.append(base if count == 0 else f"{base}_{count}")
    return labels


def cell_text(value: Any) -> str:
    """Render a cell value as text; integral floats drop their ``.0``."""

    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat() if value.time() == datetime.min.time() else value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def read_workbook_rows(source: str | Path | bytes) -> List[Dict[str, str]]:
    """Return the first sheet as a list of ``{label: text}`` rows.

    The first row supplies the labels. Empty cells map to ``""`` and fully
    blank rows are skipped.

    Raises:
        ValidationError: If ``source`` is not a readable workbook.
    """

    handle = io.BytesIO(source) if isinstance(source, (bytes, bytearray)) else source
    try:
        workbook = load_workbook(handle, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError) as exc:
        raise ValidationError(f"Failed to parse Excel file: {exc}") from exc

    try:
        sheet = workbook.worksheets[0]
        iterator = sheet.iter_rows(values_only=True)
        header = next(iterator, None)
        if header is None:
            return []
        labels = column_labels(header)
        rows: List[Dict[str, str]] = []
        for values in iterator:
            texts = [cell_text(value) for value in values]
            if not any(texts):
                continue
            texts.extend([""] * (len(labels) - len(texts)))
            rows.append(dict(zip(labels, texts)))
    finally:
        workbook.close()
    LOGGER.info("Read %s rows from sheet '%s'", len(rows), sheet.title)
    return rows


def write_template(path: str | Path) -> Path:
    """Write a sample workbook in the layout :func:`read_workbook_rows` expects."""

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Template"
    sheet.append([TEMPLATE_TITLE] + [None] * (len(TEMPLATE_LABELS) - 1))
    sheet.append(list(TEMPLATE_LABELS))
    header_font = Font(bold=True)
    for idx in range(1, len(TEMPLATE_LABELS) + 1):
        sheet.cell(row=1, column=idx).font = header_font
        sheet.cell(row=2, column=idx).font = header_font
    sheet.append(list(TEMPLATE_SAMPLE_ROW))
    workbook.save(target)
    return target


__all__ = ["EMPTY_LABEL", "cell_text", "column_labels", "read_workbook_rows", "write_template"]
