"""
Test Package for Campaign Analyst

Test suites for the classifier comparison: data loading and encoding, the
holdout partition, every model adapter, the tree ensemble diagnostics,
feature selection, reporting, the pipeline and the command line.

Test Categories:
- Unit Tests: loader, encoder, metrics, partition, worker pool
- ML Tests (``-m ml``): adapter training and prediction on synthetic data
- Integration Tests (``-m integration``): complete pipeline and CLI runs

Usage:
    # Run all tests
    pytest

    # Skip the end-to-end runs
    pytest -m "not integration"

    # Run with coverage
    pytest --cov=campaign_analyst --cov-report=html

Fixtures (synthetic bank files, separable data, fast settings, worker pools)
are defined in conftest.py. No real data file is needed.
"""

__description__ = "Test suite for Campaign Analyst"

TEST_PACKAGE_NAME = "campaign_analyst.tests"
PYTEST_MIN_VERSION = "7.0.0"

__all__ = ["__description__", "TEST_PACKAGE_NAME"]
