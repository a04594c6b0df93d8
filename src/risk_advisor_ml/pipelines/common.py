"""Shared utilities for deployment pipelines."""

from __future__ import annotations

from collections.abc import Hashable, Iterable, Sequence
from pathlib import Path
from typing import Any, TypeVar

import pandas as pd

T = TypeVar("T", bound=Hashable)


def clean_columns(cols: Sequence[object]) -> list[str]:
    return [" ".join(str(col).strip().split()) for col in cols]


def dedupe_keep_order(items: Iterable[T]) -> list[T]:
    seen: set[T] = set()
    out: list[T] = []
    for item in items:
        if item not in seen:
            out.append(item)
            seen.add(item)
    return out


def load_dataset(data_path: Path) -> pd.DataFrame:
    if not data_path.exists():
        raise FileNotFoundError(f"Missing dataset: {data_path}")

    df = pd.read_csv(data_path, na_values=["NULL", "NA", ""])
    df.columns = clean_columns(list(df.columns))
    return df


def values_equal(left: Any, right: Any) -> bool:
    if pd.isna(left) and pd.isna(right):
        return True
    try:
        return float(left) == float(right)
    except (TypeError, ValueError):
        return str(left) == str(right)
