"""Unit tests for core.dataset_loader."""
import numpy as np
import pandas as pd
import pytest

from core.dataset_loader import load_csv_dataset, normalize_dataset
from core.exceptions import InvalidDatasetError


def test_records_become_string_cells():
    df = normalize_dataset([{"a": 1, "b": None}, {"a": 2.5, "b": "x"}])
    assert list(df.columns) == ["a", "b"]
    assert df.loc[1, "a"] == "2.5"
    assert list(df["b"]) == ["", "x"]


def test_dataframe_gets_range_index():
    df = normalize_dataset(pd.DataFrame({"a": ["x", "y"]}, index=[10, 20]))
    assert list(df.index) == [0, 1]


def test_nan_becomes_empty_string():
    df = normalize_dataset(pd.DataFrame({"a": [1.0, np.nan]}))
    assert df.loc[1, "a"] == ""


def test_csv_keeps_missing_tokens_visible(tmp_path):
    path = tmp_path / "data.csv"
    path.write_text("id,amount\n1,NA\n2,\n3,7\n", encoding="utf-8")
    df = load_csv_dataset(str(path))
    assert list(df["amount"]) == ["NA", "", "7"]


def test_unreadable_csv_raises(tmp_path):
    with pytest.raises(InvalidDatasetError):
        load_csv_dataset(str(tmp_path / "missing.csv"))


def test_empty_input_raises():
    with pytest.raises(InvalidDatasetError, match="empty"):
        normalize_dataset([])
