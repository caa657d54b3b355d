"""Excel report output with formula-injection protection."""
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Mapping, Optional

import pandas as pd

# DDE/external command patterns
DDE_PATTERNS = [
    re.compile(r"=\s*CMD\s*\|", re.IGNORECASE),
    re.compile(r"=\s*EXEC\s*\(", re.IGNORECASE),
    re.compile(r"=\s*HYPERLINK\s*\(", re.IGNORECASE),
    re.compile(r"=\s*WEBSERVICE\s*\(", re.IGNORECASE),
]

DANGEROUS_PREFIXES = ("=", "+", "-", "@", "\t", "\r", "\n")


def sanitize_cell_value(value: Any) -> Any:
    """Sanitize cell values to prevent formula injection.

    Product names and raw price text come from third-party pages, so any
    string Excel could evaluate is written as literal text instead.

    Args:
        value: Cell value to sanitize.

    Returns:
        Sanitized value, or original if safe.
    """
    if not isinstance(value, str):
        return value

    if (
        value.startswith(DANGEROUS_PREFIXES)
        or value.lstrip().startswith(DANGEROUS_PREFIXES)
        or any(p.search(value) for p in DDE_PATTERNS)
    ):
        # Prefix with single quote to neutralize formula
        return f"'{value}"
    return value


def sanitize_frame(df: pd.DataFrame) -> pd.DataFrame:
    """Apply ``sanitize_cell_value`` to every text column."""
    df = df.copy()
    for col in df.columns:
        if pd.api.types.is_numeric_dtype(df[col]):
            continue
        df[col] = df[col].apply(sanitize_cell_value)
    return df


def _write_sheet(writer: pd.ExcelWriter, df: pd.DataFrame, sheet_name: str, header_format) -> Any:
    df = sanitize_frame(df)
    df.to_excel(writer, sheet_name=sheet_name, index=False)
    worksheet = writer.sheets[sheet_name]
    for col_num, value in enumerate(df.columns.values):
        worksheet.write(0, col_num, value, header_format)
    return worksheet


def _concat(frames: Mapping[str, Mapping[str, pd.DataFrame]], key: str) -> pd.DataFrame:
    parts = [f[key] for f in frames.values() if key in f and not f[key].empty]
    if not parts:
        return pd.DataFrame()
    return pd.concat(parts, ignore_index=True)


def save_cart_report(
    comparison: dict,
    frames: Mapping[str, Mapping[str, pd.DataFrame]],
    output_dir: Path,
    item_matrix: Optional[pd.DataFrame] = None,
) -> Path:
    """Save a cart comparison to Excel.

    Args:
        comparison: Result of ``compare_carts`` (uses summary_df).
        frames: ``cart_to_frames`` output per platform.
        output_dir: Directory to save the output file.
        item_matrix: Optional ``compare_items`` result, written as a
            "Item Matrix" sheet.

    Returns:
        Path to the created output file.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    output_path = output_dir / f"cart_comparison_{timestamp}.xlsx"

    with pd.ExcelWriter(output_path, engine="xlsxwriter") as writer:
        workbook = writer.book

        header_format = workbook.add_format(
            {"bold": True, "bg_color": "#4F81BD", "font_color": "white"}
        )
        cheapest_format = workbook.add_format({"bg_color": "#C6EFCE"})
        warning_format = workbook.add_format({"bg_color": "#FFC7CE"})
        currency_format = workbook.add_format({"num_format": "₹#,##0.00"})

        # Summary sheet
        summary_df = comparison["summary_df"]
        worksheet = _write_sheet(writer, summary_df, "Summary", header_format)
        if "cheapest" in summary_df.columns and not summary_df.empty:
            col = summary_df.columns.get_loc("cheapest")
            worksheet.conditional_format(
                1,
                col,
                len(summary_df),
                col,
                {"type": "text", "criteria": "containing", "value": "CHEAPEST", "format": cheapest_format},
            )
        for col_name in ("subtotal", "delivery_fee", "taxes", "total", "difference"):
            if col_name in summary_df.columns:
                col_idx = summary_df.columns.get_loc(col_name)
                worksheet.set_column(col_idx, col_idx, 12, currency_format)

        # Items sheet
        items_df = _concat(frames, "items_df")
        worksheet = _write_sheet(writer, items_df, "Items", header_format)
        worksheet.set_column(0, 0, 12)
        for col_name in ("unit_price", "line_total"):
            if col_name in items_df.columns:
                col_idx = items_df.columns.get_loc(col_name)
                worksheet.set_column(col_idx, col_idx, 12, currency_format)

        # Item matrix sheet
        if item_matrix is not None and not item_matrix.empty:
            worksheet = _write_sheet(writer, item_matrix, "Item Matrix", header_format)
            worksheet.set_column(0, 0, 40)

        # Warnings sheet (only when some value could not be read)
        warnings_df = _concat(frames, "warnings_df")
        if not warnings_df.empty:
            worksheet = _write_sheet(writer, warnings_df, "Warnings", header_format)
            worksheet.set_column(0, len(warnings_df.columns) - 1, 18, warning_format)

    return output_path
