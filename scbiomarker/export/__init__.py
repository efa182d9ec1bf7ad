"""
Spreadsheet export of result tables.
"""
from .workbook import write_workbook, build_biomarker_table, direction_overlap, sheet_name

__all__ = [
    'write_workbook',
    'build_biomarker_table',
    'direction_overlap',
    'sheet_name',
]
