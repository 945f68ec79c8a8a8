"""
🧪 Pytest Configuration for the NMF subtype statistics tests

- Puts the project root on sys.path so `config`, `logger` and `nmf_stats` import
- Registers the unit / integration markers
- Shared survival-curve fixtures
"""

import os
import sys

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import pytest

from nmf_stats.survival_data import SurvivalCurve


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: marks tests as unit tests")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")


@pytest.fixture
def identical_curves():
    """Two identical curves A and B, 100 samples each."""
    points = [(0, 1.0), (12, 0.8), (24, 0.5)]
    return [
        SurvivalCurve.from_points("A", points),
        SurvivalCurve.from_points("B", points),
    ], {"A": 100, "B": 100}


@pytest.fixture
def diverging_curves():
    """Reference curve A and a worse curve B sharing monthly time points."""
    times = list(range(0, 61, 6))
    a = [(t, 0.985 ** t) for t in times]
    b = [(t, 0.96 ** t) for t in times]
    return [
        SurvivalCurve.from_points("A", a),
        SurvivalCurve.from_points("B", b),
    ], {"A": 120, "B": 120}
