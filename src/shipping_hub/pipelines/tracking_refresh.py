from __future__ import annotations

import datetime as dt
import logging
import warnings
from pathlib import Path
from typing import Any, Optional

import numpy as np
import pandas as pd
from openpyxl import load_workbook

from shipping_hub.errors import ValidationError
from shipping_hub.models import ShipmentStatus
from shipping_hub.rules.status_normalizer import get_status_label, is_failure, is_success, is_terminal
from shipping_hub.services.orchestrator import ShippingOrchestrator

TRACKING_COL = "Tracking Number"
PROVIDER_COL = "Provider Id"
STATUS_COL = "Shipment Status"

REQUIRED_INPUT_COLUMNS = [TRACKING_COL, PROVIDER_COL]

OUTPUT_COLUMNS = [
    STATUS_COL,
    "Status Label",
    "Provider Status",
    "Last Event Utc",
    "IsTerminal",
    "IsDelivered",
    "IsFailure",
    "Refresh Error",
]

SHIPMENTS_SHEET = "Shipments"
ERRORS_SHEET = "Refresh Errors"
MARKER_SHEET = "Marker"


def _is_blank(val: Any) -> bool:
    """True if value is None/NaN/empty/"nan"/"none" (case-insensitive)."""
    if val is None:
        return True
    if isinstance(val, float) and np.isnan(val):
        return True
    s = str(val).strip()
    return s == "" or s.lower() in {"nan", "none"}


def clean_tracking_number(v: Any) -> str:
    """Undo Excel's number coercion: 1.2345E+11 / 123456789012.0 -> '123456789012'."""
    if _is_blank(v):
        return ""
    if isinstance(v, float):
        return str(int(v)) if v.is_integer() else str(v)
    s = str(v).strip()
    if s.isdigit():
        return s
    if s.endswith(".0") and s[:-2].isdigit():
        return s[:-2]
    if "e+" in s.lower():
        try:
            return str(int(float(s.replace(",", ""))))
        except ValueError:
            return s
    return s


def _parse_status(val: Any) -> Optional[ShipmentStatus]:
    if _is_blank(val):
        return None
    try:
        return ShipmentStatus(str(val).strip().lower())
    except ValueError:
        return None


def _flags(status: ShipmentStatus) -> dict[str, Any]:
    return {
        STATUS_COL: status.value,
        "Status Label": get_status_label(status),
        "IsTerminal": int(is_terminal(status)),
        "IsDelivered": int(is_success(status)),
        "IsFailure": int(is_failure(status)),
    }


class TrackingRefreshProcessor:
    """Re-tracks every open shipment in a workbook and writes *_processed.xlsx.

    Rows whose `Shipment Status` is already terminal are carried through
    untouched. A row that cannot be tracked gets its error in `Refresh Error`
    and keeps whatever status it had.
    """

    def __init__(
        self,
        logger: logging.Logger,
        orchestrator: ShippingOrchestrator,
        *,
        reference_now: dt.datetime | None = None,
    ) -> None:
        self.logger = logger
        self.orchestrator = orchestrator
        self.reference_now = reference_now

    def process(self, input_path: Path, processed_path: Path) -> dict[str, Any]:
        input_path = Path(input_path)
        processed_path = Path(processed_path)

        if not input_path.exists():
            self.logger.error("Input file does not exist: %s", input_path)
            raise FileNotFoundError(input_path)

        df_in = pd.read_excel(input_path, sheet_name=0, engine="openpyxl", dtype=object)
        self.logger.debug("Opened input workbook: %s (rows=%d, cols=%d)",
                          input_path.name, len(df_in), len(df_in.columns))

        missing = [c for c in REQUIRED_INPUT_COLUMNS if c not in df_in.columns]
        if missing:
            raise ValidationError(f"{input_path.name} is missing required column(s): {', '.join(missing)}")

        df_out, counts = self.refresh(df_in)

        now_utc = (self.reference_now or dt.datetime.now(dt.timezone.utc)).isoformat()
        marker = pd.DataFrame([{
            "input_name": input_path.name,
            "output_name": processed_path.name,
            "timestamp_utc": now_utc,
            "rows": len(df_out),
            **counts,
        }])

        processed_path.parent.mkdir(parents=True, exist_ok=True)
        self._write_workbook(processed_path, df_out, marker)

        self.logger.info("Wrote processed workbook -> %s (tracked=%d skipped=%d errors=%d)",
                         processed_path, counts["tracked"], counts["skipped"], counts["errors"])
        return {
            "output_path": str(processed_path),
            "timestamp_utc": now_utc,
            "output_cols": list(df_out.columns),
            "output_shape": (len(df_out), len(df_out.columns)),
            **counts,
        }

    def refresh(self, df_in: pd.DataFrame) -> tuple[pd.DataFrame, dict[str, int]]:
        """Return (frame with OUTPUT_COLUMNS filled, counts of tracked/skipped/errors)."""
        out = df_in.copy()
        out[TRACKING_COL] = out[TRACKING_COL].astype("object").map(clean_tracking_number)
        for col in OUTPUT_COLUMNS:
            if col not in out.columns:
                out[col] = ""
        out = out.astype({col: "object" for col in OUTPUT_COLUMNS})

        counts = {"tracked": 0, "skipped": 0, "errors": 0}

        for idx, row in out.iterrows():
            tn = row[TRACKING_COL]
            existing = _parse_status(row.get(STATUS_COL))

            if existing is not None and is_terminal(existing):
                for k, v in _flags(existing).items():
                    out.at[idx, k] = v
                out.at[idx, "Refresh Error"] = ""
                counts["skipped"] += 1
                continue

            if not tn:
                out.at[idx, "Refresh Error"] = "missing tracking number"
                counts["errors"] += 1
                continue

            provider_id = None if _is_blank(row[PROVIDER_COL]) else str(row[PROVIDER_COL]).strip()
            try:
                info = self.orchestrator.track_shipment(tn, provider_id)
            except Exception as ex:  # row-level; recorded in Refresh Error
                self.logger.warning("Tracking failed for %s/%s: %s", provider_id, tn, ex)
                out.at[idx, "Refresh Error"] = f"{type(ex).__name__}: {ex}"
                if existing is not None:
                    for k, v in _flags(existing).items():
                        out.at[idx, k] = v
                counts["errors"] += 1
                continue

            current = info.current_status
            for k, v in _flags(current.status).items():
                out.at[idx, k] = v
            out.at[idx, "Provider Status"] = current.provider_status
            if current.timestamp is not None:
                out.at[idx, "Last Event Utc"] = current.timestamp.astimezone(dt.timezone.utc).isoformat()
            out.at[idx, "Refresh Error"] = ""
            counts["tracked"] += 1

        for col in OUTPUT_COLUMNS:
            out[col] = out[col].where(pd.notna(out[col]), "")
        return out, counts

    def _write_workbook(self, processed_path: Path, df_out: pd.DataFrame, marker: pd.DataFrame) -> None:
        errors = df_out[df_out["Refresh Error"].astype(str) != ""]

        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            with pd.ExcelWriter(processed_path, engine="openpyxl", mode="w") as xw:
                df_out.to_excel(xw, sheet_name=SHIPMENTS_SHEET, index=False, na_rep="")
                errors.to_excel(xw, sheet_name=ERRORS_SHEET, index=False, na_rep="")
                marker.to_excel(xw, sheet_name=MARKER_SHEET, index=False)

        # Excel TEXT format for tracking numbers so long AWBs don't turn into 1.2E+11
        wb = load_workbook(processed_path)
        for sheet_name in (SHIPMENTS_SHEET, ERRORS_SHEET):
            ws = wb[sheet_name]
            header = [c.value for c in ws[1]]
            if TRACKING_COL not in header:
                continue
            col_idx = header.index(TRACKING_COL) + 1
            for r in range(2, ws.max_row + 1):
                cell = ws.cell(row=r, column=col_idx)
                cell.value = clean_tracking_number(cell.value)
                cell.number_format = "@"
        wb.save(processed_path)
