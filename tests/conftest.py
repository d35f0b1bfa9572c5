"""Pytest fixtures for incremental preprocessing tests."""
import numpy as np
import pandas as pd
import pytest

from Tools import incremental_preprocessing as workflow_tools

REGIONS = ["north", "south", "east", "west"]


def _missing_amount_frame(n_rows: int, missing_every: int = 20, seed: int = 0) -> pd.DataFrame:
    """id (unique), amount (uniform 10-100, every Nth cell blank), region (4 values)."""
    rng = np.random.default_rng(seed)
    amounts = rng.uniform(10, 100, n_rows).round(2).astype(str).astype(object)
    amounts[::missing_every] = ""
    return pd.DataFrame({
        "id":     np.arange(n_rows).astype(str),
        "amount": amounts,
        "region": [REGIONS[i % len(REGIONS)] for i in range(n_rows)],
    })


@pytest.fixture
def make_missing_frame():
    """Factory: make_missing_frame(n_rows, missing_every=20, seed=0)."""
    return _missing_amount_frame


@pytest.fixture
def drift_frame() -> pd.DataFrame:
    """20k rows whose product codes follow a long-tailed (geometric) distribution."""
    rng = np.random.default_rng(3)
    k = rng.geometric(0.15, 20_000)
    return pd.DataFrame({
        "id":      np.arange(20_000).astype(str),
        "product": [f"sku_{v}" for v in k],
    })


@pytest.fixture
def noise_frame() -> pd.DataFrame:
    """20k rows, three numeric columns each with independent 5% blank cells."""
    rng = np.random.default_rng(5)
    n = 20_000
    data = {"id": np.arange(n).astype(str)}
    for col in ("x1", "x2", "x3"):
        values = rng.uniform(0, 1, n).round(4).astype(str).astype(object)
        values[rng.random(n) < 0.05] = ""
        data[col] = values
    return pd.DataFrame(data)


@pytest.fixture
def clean_rows() -> list[dict]:
    """50 clean records; the first sample already covers the whole dataset."""
    return [{"id": str(i), "grade": "a" if i % 2 else "b"} for i in range(50)]


@pytest.fixture(autouse=True)
def reset_workflow_store():
    workflow_tools.init_workflow_store(None, None)
    yield
    workflow_tools.init_workflow_store(None, None)
