from __future__ import annotations

from pathlib import Path
from typing import Tuple

PROCESSED_SUFFIX = "_processed.xlsx"
WORKBOOK_SUFFIXES = (".xlsx", ".xlsm")


def derive_output_paths(input_file: Path) -> Tuple[Path, Path]:
    """
    Given a shipments workbook, return (processed_xlsx_path, log_path) beside it.

    Raises FileNotFoundError if the workbook doesn't exist and ValueError if it
    is not an Excel workbook (explicit early signals for the CLI).
    """
    p = Path(input_file)
    if not p.exists():
        raise FileNotFoundError(p)
    if p.suffix.lower() not in WORKBOOK_SUFFIXES:
        raise ValueError(f"expected an .xlsx workbook, got {p.name}")

    processed = p.with_name(f"{p.stem}{PROCESSED_SUFFIX}")
    return processed, p.with_suffix(".log")

