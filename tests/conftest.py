"""Pytest configuration: path setup and small simulated models."""

from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pytest

ROOT_PATH = Path(__file__).resolve().parents[1]

if str(ROOT_PATH) not in sys.path:
    sys.path.insert(0, str(ROOT_PATH))

from engine import InferenceEngine  # noqa: E402
from parameter_loader import SimulatedParameterLoader  # noqa: E402
from storage import ParameterStore  # noqa: E402

SMALL_HIDDEN_DIMS = (24, 20, 16, 32)


@pytest.fixture()
def loader() -> SimulatedParameterLoader:
    """Seeded random weights with narrow hidden layers to keep tests fast."""
    return SimulatedParameterLoader(hidden_dims=SMALL_HIDDEN_DIMS, seed=7)


@pytest.fixture()
def variables(loader):
    return loader.get_all_variables()


@pytest.fixture()
def store(variables) -> ParameterStore:
    return ParameterStore(variables)


@pytest.fixture()
def engine(store) -> InferenceEngine:
    eng = InferenceEngine()
    eng.load(store)
    return eng


@pytest.fixture()
def zero_embedding() -> np.ndarray:
    return np.zeros(40, dtype=np.float32)
