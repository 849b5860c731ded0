"""
Shared pytest configuration and fixtures for the Campaign Analyst test suite.

Fixtures Provided:
- Synthetic bank-marketing files (semicolon delimited, quoted categoricals)
- Loaded and encoded synthetic datasets
- Perfectly separable and dominant-predictor numeric datasets
- Small, fast Settings for pipeline runs
- A threading WorkerPool that is always closed after the test

All data is generated with numpy from fixed seeds; no network access and no
real data file are needed.
"""

import warnings
from pathlib import Path
from typing import Generator

import numpy as np
import pandas as pd
import pytest

from campaign_analyst.config import (
    BANK_COLUMNS,
    EnsembleConfig,
    ParallelConfig,
    ReportConfig,
    SelectionConfig,
    Settings,
)
from campaign_analyst.utils.parallel import WorkerPool
from campaign_analyst.utils.preprocessing import Dataset, Encoding, encode_features, load_bank_marketing

warnings.filterwarnings("ignore", category=UserWarning, module="sklearn")
warnings.filterwarnings("ignore", category=FutureWarning)

JOBS = ["admin.", "blue-collar", "management", "retired", "services", "technician", "unknown"]
MARITAL = ["divorced", "married", "single"]
EDUCATION = ["primary", "secondary", "tertiary", "unknown"]
CONTACT = ["cellular", "telephone", "unknown"]
MONTHS = ["apr", "aug", "dec", "feb", "jan", "jul", "jun", "mar", "may", "nov", "oct", "sep"]
POUTCOME = ["failure", "other", "success", "unknown"]


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "ml: mark test as model adapter test")
    config.addinivalue_line("markers", "integration: mark test as end-to-end pipeline test")
    config.addinivalue_line("markers", "slow: mark test as slow running test")


# =============================================================================
# Synthetic data
# =============================================================================

def make_bank_frame(n_rows: int = 300, seed: int = 7) -> pd.DataFrame:
    """Bank-schema frame whose label depends on duration and previous outcome."""
    rng = np.random.default_rng(seed)
    duration = rng.integers(5, 900, n_rows)
    poutcome = rng.choice(POUTCOME, n_rows, p=[0.2, 0.1, 0.2, 0.5])
    previous = np.where(poutcome == "unknown", 0, rng.integers(1, 6, n_rows))
    pdays = np.where(previous == 0, -1, rng.integers(1, 400, n_rows))

    logit = (duration - 450) / 120 + 1.5 * (poutcome == "success") + rng.normal(0, 0.7, n_rows)
    label = np.where(logit > 0.3, "yes", "no")

    frame = pd.DataFrame({
        "age": rng.integers(18, 90, n_rows),
        "job": rng.choice(JOBS, n_rows),
        "marital": rng.choice(MARITAL, n_rows),
        "education": rng.choice(EDUCATION, n_rows),
        "default": rng.choice(["no", "yes"], n_rows, p=[0.8, 0.2]),
        "balance": rng.integers(-500, 20000, n_rows),
        "housing": rng.choice(["no", "yes"], n_rows),
        "loan": rng.choice(["no", "yes"], n_rows, p=[0.7, 0.3]),
        "contact": rng.choice(CONTACT, n_rows),
        "day": rng.integers(1, 32, n_rows),
        "month": rng.choice(MONTHS, n_rows),
        "duration": duration,
        "campaign": rng.integers(1, 10, n_rows),
        "pdays": pdays,
        "previous": previous,
        "poutcome": poutcome,
        "y": label,
    })
    return frame[BANK_COLUMNS]


def write_bank_file(frame: pd.DataFrame, path: Path) -> Path:
    """Write a frame the way bank-full.csv is laid out: ';' separated, strings quoted."""
    lines = [";".join(f'"{name}"' for name in frame.columns)]
    for row in frame.itertuples(index=False):
        lines.append(";".join(
            f'"{value}"' if isinstance(value, str) else str(value)
            for value in row
        ))
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


@pytest.fixture
def bank_frame() -> pd.DataFrame:
    return make_bank_frame()


@pytest.fixture
def bank_csv(tmp_path, bank_frame) -> Path:
    """Synthetic bank-full style file."""
    return write_bank_file(bank_frame, tmp_path / "bank-full.csv")


@pytest.fixture
def bank_dataset(bank_csv) -> Dataset:
    return load_bank_marketing(bank_csv)


@pytest.fixture
def small_bank_dataset(tmp_path) -> Dataset:
    """20 rows, 10 of each class."""
    return load_bank_marketing(write_bank_file(make_bank_frame(20, seed=1), tmp_path / "bank-small.csv"))


@pytest.fixture
def ordinal_features(bank_dataset):
    return encode_features(bank_dataset, Encoding.ORDINAL_CODES)


@pytest.fixture
def one_hot_features(bank_dataset):
    return encode_features(bank_dataset, Encoding.ONE_HOT)


@pytest.fixture
def separable_data():
    """100 rows, one numeric feature, classes separated by a gap around zero."""
    X = np.concatenate([np.linspace(-5, -1, 50), np.linspace(1, 5, 50)]).reshape(-1, 1)
    y = np.concatenate([np.zeros(50, dtype=int), np.ones(50, dtype=int)])
    return X, y


@pytest.fixture
def dominant_predictor_data():
    """Feature 0 decides the label; features 1-4 are pure noise."""
    rng = np.random.default_rng(3)
    n_rows = 150
    signal = rng.choice([-1.0, 1.0], n_rows) * rng.uniform(0.2, 1.0, n_rows)
    X = np.column_stack([signal, rng.normal(size=(n_rows, 4))])
    y = (signal > 0).astype(int)
    return X, y


# =============================================================================
# Runtime fixtures
# =============================================================================

@pytest.fixture
def fast_settings(tmp_path) -> Settings:
    """Settings that keep a full pipeline run to a few seconds."""
    return Settings(
        ensemble=EnsembleConfig(n_trees=20, reduced_n_trees=15),
        selection=SelectionConfig(keep_in_top_k=3, cv_folds=3, max_steps=2, n_trees=5),
        parallel=ParallelConfig(n_jobs=2, backend="threading"),
        report=ReportConfig(output_dir=tmp_path / "results", figure_dpi=60),
    )


@pytest.fixture
def worker_pool() -> Generator[WorkerPool, None, None]:
    """Open threading pool, closed after the test."""
    pool = WorkerPool(n_jobs=2, backend="threading")
    pool.open()
    try:
        yield pool
    finally:
        pool.close()
