"""Spreadsheet import: reading, normalizing, filtering, and workspace state."""

from .normalizer import DEFAULT_COLUMN_MAPPING, adapt_legacy_record, normalize_rows
from .spreadsheet import read_workbook_rows, write_template
from .unassigned import AssignedKeys, UnassignedSelection, filter_unassigned
from .workspace import ImportWorkspace, RecoveryStats

__all__ = [
    "AssignedKeys",
    "DEFAULT_COLUMN_MAPPING",
    "ImportWorkspace",
    "RecoveryStats",
    "UnassignedSelection",
    "adapt_legacy_record",
    "filter_unassigned",
    "normalize_rows",
    "read_workbook_rows",
    "write_template",
]
