"""Cart comparison across platforms."""
import re
from difflib import get_close_matches
from typing import Any, Mapping, Optional

import numpy as np
import pandas as pd

from .models import CartDetails

ITEM_COLUMNS = [
    "platform",
    "product_id",
    "name",
    "weight",
    "quantity",
    "unit_price",
    "line_total",
]
SUMMARY_COLUMNS = [
    "platform",
    "item_count",
    "subtotal",
    "delivery_fee",
    "taxes",
    "total",
    "currency",
    "complete",
    "warning_count",
]
WARNING_COLUMNS = ["platform", "field", "item_index", "raw_text", "message"]

# Quantity and unit, e.g. "500 ml", "1L", "2kg"
SIZE_PATTERN = re.compile(
    r"(\d+(?:\.\d+)?)\s*(kg|g|gm|mg|ml|l|ltr|litre|liter|pcs|pc|pack)\b",
    re.IGNORECASE,
)


def normalize_product_name(name: Optional[str]) -> str:
    """Normalize product name for cross-platform matching.

    Handles:
    - Leading/trailing and repeated internal whitespace
    - Case differences
    - Hyphen/underscore vs space ("amul-taaza-milk" matches "Amul Taaza Milk")

    Args:
        name: Raw product name.

    Returns:
        Normalized product name (lowercase, stripped).
    """
    if name is None or pd.isna(name):
        return ""
    name = str(name).replace("-", " ").replace("_", " ")
    return " ".join(name.split()).lower()


def find_best_match(
    product_name: str,
    candidates: list[str],
    threshold: float = 0.8,
) -> Optional[str]:
    """Find the candidate naming the same product, exact match first then fuzzy.

    Args:
        product_name: Product name to match.
        candidates: Candidate product names.
        threshold: Minimum similarity ratio (0.0 to 1.0).

    Returns:
        Best matching candidate as given, or None.
    """
    normalized = normalize_product_name(product_name)
    if not normalized or not candidates:
        return None

    normalized_candidates = {}
    for candidate in candidates:
        key = normalize_product_name(candidate)
        if key:
            normalized_candidates.setdefault(key, candidate)

    if normalized in normalized_candidates:
        return normalized_candidates[normalized]

    matches = get_close_matches(normalized, list(normalized_candidates), n=1, cutoff=threshold)
    if matches:
        return normalized_candidates[matches[0]]
    return None


def pack_size(name: Optional[str], weight: Optional[str] = "") -> Optional[str]:
    """Pack size such as "500ml" from the weight, else from the product name.

    Returns:
        Compact lowercase size, the normalized weight text when it holds no
        quantity, or None when neither says anything.
    """
    weight = (weight or "").strip()
    for text in (weight, name or ""):
        match = SIZE_PATTERN.search(text)
        if match:
            return match.group(1) + match.group(2).lower()
    return normalize_product_name(weight) or None


def cart_to_frames(cart: CartDetails, platform: str) -> dict[str, pd.DataFrame]:
    """Flatten one cart into item, summary and warning tables.

    Returns:
        Dictionary with items_df, summary_df and warnings_df.
    """
    items_df = pd.DataFrame(
        [
            {
                "platform": platform,
                "product_id": item.product_id,
                "name": item.name,
                "weight": item.weight,
                "quantity": item.quantity,
                "unit_price": float(item.price),
                "line_total": float(item.price * item.quantity),
            }
            for item in cart.items
        ],
        columns=ITEM_COLUMNS,
    )

    summary_df = pd.DataFrame(
        [
            {
                "platform": platform,
                "item_count": len(cart.items),
                "subtotal": float(cart.subtotal),
                "delivery_fee": float(cart.delivery_fee),
                "taxes": float(cart.taxes),
                "total": float(cart.total),
                "currency": cart.currency,
                "complete": cart.is_complete,
                "warning_count": len(cart.warnings),
            }
        ],
        columns=SUMMARY_COLUMNS,
    )

    warnings_df = pd.DataFrame(
        [
            {
                "platform": platform,
                "field": w.field,
                "item_index": w.item_index,
                "raw_text": w.raw_text,
                "message": w.message,
            }
            for w in cart.warnings
        ],
        columns=WARNING_COLUMNS,
    )

    return {"items_df": items_df, "summary_df": summary_df, "warnings_df": warnings_df}


def compare_carts(carts: Mapping[str, CartDetails]) -> dict:
    """Rank platforms by cart total.

    Carts with extraction warnings are listed but only win "cheapest" when no
    complete cart exists.

    Args:
        carts: Cart per platform name.

    Returns:
        Dictionary containing:
        - summary_df: One row per platform, sorted by total, with rank and
          difference to the cheapest.
        - cheapest: Platform name, or None when no carts were given.
        - summary: Overall statistics.
    """
    if not carts:
        return {
            "summary_df": pd.DataFrame(columns=SUMMARY_COLUMNS + ["rank", "difference", "cheapest"]),
            "cheapest": None,
            "summary": {
                "platforms_compared": 0,
                "cheapest_platform": None,
                "cheapest_total": None,
                "most_expensive_platform": None,
                "max_saving": 0.0,
                "incomplete_platforms": [],
                "message": "No carts to compare",
            },
        }

    summary_df = pd.concat(
        [cart_to_frames(cart, platform)["summary_df"] for platform, cart in carts.items()],
        ignore_index=True,
    )
    summary_df = summary_df.sort_values(["total", "platform"], kind="stable").reset_index(drop=True)

    candidates = summary_df[summary_df["complete"]]
    if candidates.empty:
        candidates = summary_df
    cheapest_row = candidates.iloc[0]
    cheapest = str(cheapest_row["platform"])

    summary_df["rank"] = summary_df["total"].rank(method="min").astype(int)
    summary_df["difference"] = (summary_df["total"] - cheapest_row["total"]).round(2)
    summary_df["cheapest"] = np.where(summary_df["platform"] == cheapest, "CHEAPEST", "")

    most_expensive = summary_df.iloc[-1]
    summary = {
        "platforms_compared": len(summary_df),
        "cheapest_platform": cheapest,
        "cheapest_total": float(cheapest_row["total"]),
        "most_expensive_platform": str(most_expensive["platform"]),
        "max_saving": round(float(most_expensive["total"] - cheapest_row["total"]), 2),
        "incomplete_platforms": summary_df.loc[~summary_df["complete"], "platform"].tolist(),
    }

    return {"summary_df": summary_df, "cheapest": cheapest, "summary": summary}


def compare_items(carts: Mapping[str, CartDetails], threshold: float = 0.8) -> pd.DataFrame:
    """Line up the same product across platforms by fuzzy name match.

    An item only joins a row that has no price yet for its platform and has
    the same pack size; everything else gets a row of its own.

    Returns:
        DataFrame with a ``product`` column, one unit-price column per platform
        (NaN where the platform's cart lacks the product) and
        ``cheapest_platform``.
    """
    platforms = list(carts)
    rows: list[dict[str, Any]] = []
    sizes: list[Optional[str]] = []

    for platform, cart in carts.items():
        for item in cart.items:
            label = item.name or item.product_id
            size = pack_size(label, item.weight)

            open_rows: dict[str, dict[str, Any]] = {}
            for row, row_size in zip(rows, sizes):
                if platform not in row and row_size == size:
                    open_rows.setdefault(row["product"], row)

            match = find_best_match(label, list(open_rows), threshold=threshold)
            if match is None:
                row = {"product": label}
                rows.append(row)
                sizes.append(size)
            else:
                row = open_rows[match]
            row[platform] = float(item.price)

    if not rows:
        return pd.DataFrame(columns=["product"] + platforms + ["cheapest_platform"])

    matrix = pd.DataFrame(rows).reindex(columns=["product"] + platforms)
    prices = matrix[platforms].to_numpy(dtype=float)
    cheapest_idx = np.nanargmin(prices, axis=1)
    matrix["cheapest_platform"] = [platforms[i] for i in cheapest_idx]
    return matrix
