"""
CAMPAIGN ANALYST - CONFIGURATION
================================

Typed configuration for the classifier comparison, built on pydantic v2 and
pydantic-settings.

Every section can be overridden from the environment using the ``CAMPAIGN_``
prefix and ``__`` as the nested delimiter, for example::

    CAMPAIGN_PARTITION__HOLDOUT=0.3
    CAMPAIGN_PARALLEL__N_JOBS=4
    CAMPAIGN_MONITORING__LOG_LEVEL=DEBUG

Values may also be placed in a ``.env`` file in the working directory.
"""

from __future__ import annotations

import logging
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


# =============================================================================
# ENUMERATIONS & CONSTANTS
# =============================================================================

class LogLevel(str, Enum):
    """Logging levels accepted by the entry point."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ParallelBackend(str, Enum):
    """joblib backends usable by the worker pool."""
    LOKY = "loky"
    THREADING = "threading"
    MULTIPROCESSING = "multiprocessing"


# Column order of bank-full.csv (Moro et al., 2011)
BANK_COLUMNS: List[str] = [
    "age", "job", "marital", "education", "default", "balance", "housing",
    "loan", "contact", "day", "month", "duration", "campaign", "pdays",
    "previous", "poutcome", "y",
]

# Order in which the models are compared and reported
DEFAULT_MODELS: List[str] = [
    "neural_net", "logistic_regression", "discriminant_analysis", "knn",
    "naive_bayes", "svm", "decision_tree", "tree_bagger",
]


# =============================================================================
# CONFIGURATION SECTIONS
# =============================================================================

class DataConfig(BaseModel):
    """Input file and label layout."""

    model_config = ConfigDict(validate_assignment=True)

    path: Optional[Path] = Field(default=None, description="Delimited input file")
    delimiter: Optional[str] = Field(
        default=None,
        max_length=1,
        description="Field delimiter; sniffed from the file when unset",
    )
    expected_columns: Optional[List[str]] = Field(
        default_factory=lambda: list(BANK_COLUMNS),
        description="Header the file must carry; None accepts any header",
    )
    positive_label: str = "yes"
    negative_label: str = "no"
    unknown_token: str = "unknown"

    @model_validator(mode="after")
    def labels_differ(self):
        """Positive and negative labels must be distinct."""
        if self.positive_label == self.negative_label:
            raise ValueError("positive_label and negative_label must differ")
        return self


class PartitionConfig(BaseModel):
    """Holdout split shared by every model of a run."""

    holdout: float = Field(default=0.40, gt=0.0, lt=1.0)
    seed: int = Field(default=0, ge=0)


class ModelsConfig(BaseModel):
    """Which adapters take part in the comparison."""

    enabled: List[str] = Field(default_factory=lambda: list(DEFAULT_MODELS))

    @field_validator("enabled")
    @classmethod
    def known_models(cls, v: List[str]) -> List[str]:
        """Reject names that have no adapter."""
        unknown = [name for name in v if name not in DEFAULT_MODELS]
        if unknown:
            raise ValueError(f"Unknown model(s): {', '.join(unknown)}")
        if not v:
            raise ValueError("At least one model must be enabled")
        return v


class EnsembleConfig(BaseModel):
    """Bagged tree ensemble used for the full and the reduced comparison."""

    n_trees: int = Field(default=150, ge=1, le=5000)
    reduced_n_trees: int = Field(default=120, ge=1, le=5000)
    false_negative_cost: float = Field(
        default=5.0,
        gt=0.0,
        description="Cost of classifying a positive as negative, relative to a false positive",
    )
    compute_importance: bool = True


class SelectionConfig(BaseModel):
    """Sequential forward feature selection."""

    enabled: bool = True
    keep_in_top_k: int = Field(default=5, ge=0)
    cv_folds: int = Field(default=10, ge=2, le=50)
    tolerance: float = Field(default=1e-6, ge=0.0)
    max_steps: Optional[int] = Field(default=None, ge=1)
    n_trees: int = Field(default=50, ge=1, description="Trees of the criterion ensemble")


class ParallelConfig(BaseModel):
    """Worker pool shared by the ensemble and the feature selector."""

    n_jobs: int = Field(default=2, ge=-1)
    backend: ParallelBackend = ParallelBackend.LOKY

    @field_validator("n_jobs")
    @classmethod
    def non_zero(cls, v: int) -> int:
        """joblib does not accept zero workers."""
        if v == 0:
            raise ValueError("n_jobs must be positive or -1")
        return v


class MonitoringConfig(BaseModel):
    """Logging configuration."""

    log_level: LogLevel = LogLevel.INFO
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_file_path: Optional[Path] = None


class ReportConfig(BaseModel):
    """Where the comparison table and figures go."""

    output_dir: Path = Path("./results")
    save_figures: bool = True
    save_tables: bool = True
    figure_dpi: int = Field(default=150, ge=50, le=600)


# =============================================================================
# MAIN SETTINGS CLASS
# =============================================================================

class Settings(BaseSettings):
    """Application configuration for one comparison run."""

    model_config = SettingsConfigDict(
        env_prefix="CAMPAIGN_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        validate_assignment=True,
        extra="ignore",
    )

    app_name: str = "campaign-analyst"

    data: DataConfig = Field(default_factory=DataConfig)
    partition: PartitionConfig = Field(default_factory=PartitionConfig)
    models: ModelsConfig = Field(default_factory=ModelsConfig)
    ensemble: EnsembleConfig = Field(default_factory=EnsembleConfig)
    selection: SelectionConfig = Field(default_factory=SelectionConfig)
    parallel: ParallelConfig = Field(default_factory=ParallelConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    report: ReportConfig = Field(default_factory=ReportConfig)

    def cost_matrix(self) -> List[List[float]]:
        """Misclassification cost, true class in rows: [[0, 1], [c_fn, 0]]."""
        return [[0.0, 1.0], [self.ensemble.false_negative_cost, 0.0]]

    def create_directories(self) -> None:
        """Create the report output directory."""
        if self.report.save_figures or self.report.save_tables:
            self.report.output_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Report directory: {self.report.output_dir}")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()


def configure_logging(settings: Settings) -> None:
    """Configure root logging from the monitoring section."""
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if settings.monitoring.log_file_path:
        handlers.append(logging.FileHandler(settings.monitoring.log_file_path, encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, settings.monitoring.log_level.value),
        format=settings.monitoring.log_format,
        handlers=handlers,
        force=True,
    )


__all__ = [
    "Settings", "DataConfig", "PartitionConfig", "ModelsConfig", "EnsembleConfig",
    "SelectionConfig", "ParallelConfig", "MonitoringConfig", "ReportConfig",
    "LogLevel", "ParallelBackend", "BANK_COLUMNS", "DEFAULT_MODELS",
    "get_settings", "configure_logging",
]
