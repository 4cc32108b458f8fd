"""Shared fixtures for the clinical calculator tests."""

import shutil

import pytest

from clinical_calculators.clinical_risk_calculator import ClinicalRiskCalculator, ModelRegistry
from clinical_calculators.settings import DEFAULT_TABLES_DIR, CalculatorSettings


@pytest.fixture(scope="session")
def registry():
    """Registry loaded from the packaged tables."""
    return ModelRegistry.from_tables()


@pytest.fixture
def calculator(registry):
    """Calculator with default settings (calibration on)."""
    return ClinicalRiskCalculator(registry=registry, settings=CalculatorSettings())


@pytest.fixture
def tables_copy(tmp_path):
    """Writable copy of the packaged tables."""
    target = tmp_path / "model_tables"
    shutil.copytree(DEFAULT_TABLES_DIR, target)
    return target
