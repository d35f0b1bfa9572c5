"""
FILE: core/dataset_loader.py
------------------------------
Normalises workflow input into a DataFrame of string cells.

The engine treats every cell as text (column name -> string value);
numeric interpretation happens per column inside discovery. Rows keep a
0..n-1 RangeIndex so sample index labels are original row positions.
"""

from typing import Iterable, Mapping

import pandas as pd

from core.exceptions import InvalidDatasetError


def normalize_dataset(data: pd.DataFrame | Iterable[Mapping[str, object]]) -> pd.DataFrame:
    """
    Accepts a DataFrame or an ordered sequence of row records and returns
    a copy with str cells, "" for absent values and a RangeIndex.

    Raises:
        InvalidDatasetError: input is not row records, or has no rows or columns.
    """
    if isinstance(data, pd.DataFrame):
        df = data.copy()
    else:
        try:
            records = list(data)
            bad = next((r for r in records if not isinstance(r, (Mapping, list, tuple))), None)
            if bad is not None:
                raise TypeError(f"row {bad!r} is not a record")
            df = pd.DataFrame.from_records(records)
        except (TypeError, ValueError) as e:
            raise InvalidDatasetError(f"Dataset could not be read as row records: {e}") from e

    if df.shape[0] == 0:
        raise InvalidDatasetError("Dataset is empty.")
    if df.shape[1] == 0:
        raise InvalidDatasetError("Dataset has no columns.")

    df.columns = [str(c) for c in df.columns]
    df = df.astype(object).where(df.notna(), "")
    df = df.astype(str)
    return df.reset_index(drop=True)


def load_csv_dataset(path: str) -> pd.DataFrame:
    """Reads a CSV without pandas' own NA inference so missing tokens stay visible."""
    try:
        raw = pd.read_csv(path, dtype=str, keep_default_na=False)
    except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise InvalidDatasetError(f"Could not read dataset '{path}': {e}") from e
    return normalize_dataset(raw)
