"""InferenceEngine: forward pass, determinism, errors and tensor scoping."""

from __future__ import annotations

import gc
import weakref

import numpy as np
import pytest
import torch
from scipy.special import expit

import engine as engine_module
from encoder import one_hot
from engine import InferenceEngine, TensorArena, live_tensor_count, select_device
from errors import ComputeFailure, InvalidCharacter, InvalidEmbedding, ModelNotLoaded


def reference_forward(variables, embedding, char_id):
    """Plain NumPy/SciPy evaluation of the same network."""
    x = np.concatenate([np.asarray(embedding, dtype=np.float64), one_hot(char_id)])
    for i in range(1, 5):
        W = variables[f"Stack/fully_connected_{i}/weights"]
        b = variables[f"Stack/fully_connected_{i}/biases"]
        x = np.maximum(x @ W + b, 0.0)
    raw = expit(x @ variables["fully_connected/weights"] + variables["fully_connected/biases"])
    return (255.0 - 255.0 * raw).reshape(64, 64)


def test_grid_shape_and_range(engine, zero_embedding):
    grid = engine.infer(zero_embedding, "A")
    assert grid.shape == (64, 64)
    assert grid.dtype == np.float32
    assert grid.min() >= 0.0 and grid.max() <= 255.0


def test_matches_reference(engine, variables):
    E = np.linspace(-0.4, 0.4, 40).astype(np.float32)
    grid = engine.infer(E, "k")
    expected = reference_forward(variables, E, 36)
    np.testing.assert_allclose(grid, expected, rtol=1e-4, atol=1e-2)


def test_deterministic(engine):
    E = np.random.RandomState(0).uniform(-0.4, 0.4, 40).astype(np.float32)
    first = engine.infer(E, "g")
    for _ in range(3):
        np.testing.assert_array_equal(engine.infer(E, "g"), first)


def test_character_changes_output(engine, zero_embedding):
    upper = engine.infer(zero_embedding, "A")
    lower = engine.infer(zero_embedding, "a")
    assert not np.array_equal(upper, lower)


def test_embedding_is_not_mutated(engine):
    E = np.full(40, 0.2, dtype=np.float32)
    before = E.copy()
    engine.infer(E, "7")
    np.testing.assert_array_equal(E, before)


def test_parameters_unchanged_by_inference(engine, store):
    snapshot = {name: t.clone() for name, t in store.tensors.items()}
    for ch in "AbZ09":
        engine.infer(np.zeros(40), ch)
    for name, t in store.tensors.items():
        assert torch.equal(t, snapshot[name]), name


def test_not_loaded(zero_embedding):
    eng = InferenceEngine()
    assert not eng.loaded
    with pytest.raises(ModelNotLoaded):
        eng.infer(zero_embedding, "A")


def test_load_only_once(engine, store):
    with pytest.raises(RuntimeError, match="already loaded"):
        engine.load(store)


def test_invalid_input(engine, zero_embedding):
    with pytest.raises(InvalidCharacter):
        engine.infer(zero_embedding, "?")
    with pytest.raises(InvalidEmbedding):
        engine.infer(np.zeros(12), "A")


def test_live_tensors_released_after_success(engine, zero_embedding):
    before = live_tensor_count()
    engine.infer(zero_embedding, "Q")
    assert live_tensor_count() == before


def test_intermediate_tensors_are_freed(engine, zero_embedding, monkeypatch):
    refs = []
    original_track = TensorArena.track

    def recording_track(self, tensor):
        refs.append(weakref.ref(tensor))
        return original_track(self, tensor)

    monkeypatch.setattr(TensorArena, "track", recording_track)
    engine.infer(zero_embedding, "W")

    # embedding, one-hot, input, 4 hidden layers, output, scaled, intensity
    assert len(refs) == 10
    assert all(ref() is None for ref in refs)


class BrokenDecoder:
    """Tracks one activation, then fails the way a device would."""

    def __call__(self, x, track):
        hidden = track(torch.ones(8) + x.sum())
        raise RuntimeError(f"CUDA out of memory (hidden={hidden.shape[0]})")


def test_tensors_freed_after_backend_failure(engine, zero_embedding, monkeypatch):
    refs = []
    original_track = TensorArena.track

    def recording_track(self, tensor):
        refs.append(weakref.ref(tensor))
        return original_track(self, tensor)

    monkeypatch.setattr(TensorArena, "track", recording_track)
    monkeypatch.setattr(engine, "_decoder", BrokenDecoder())
    before = live_tensor_count()

    with pytest.raises(ComputeFailure, match="out of memory") as excinfo:
        engine.infer(zero_embedding, "A")

    # The failure is still referenced here, as it is by every waiting caller
    failure = excinfo.value
    assert isinstance(failure.__cause__, RuntimeError)
    gc.collect()

    # embedding, one-hot, input, hidden
    assert len(refs) == 4
    assert [ref for ref in refs if ref() is not None] == []
    assert live_tensor_count() == before


def test_counter_sees_tensors_that_escape_the_arena():
    before = live_tensor_count()
    with TensorArena() as arena:
        escaped = arena.track(torch.zeros(3))
    assert live_tensor_count() == before + 1

    del escaped
    assert live_tensor_count() == before


def test_out_of_range_output_is_a_failure(engine, zero_embedding, monkeypatch):
    monkeypatch.setattr(engine_module, "to_intensity", lambda raw, track: track(raw * float("nan")))
    with pytest.raises(ComputeFailure, match="out of range"):
        engine.infer(zero_embedding, "A")


def test_arena_release_is_idempotent():
    before = live_tensor_count()
    with TensorArena() as arena:
        arena.track(torch.zeros(3))
        assert len(arena) == 1
        assert live_tensor_count() == before + 1
    assert live_tensor_count() == before
    arena.release()
    assert live_tensor_count() == before
    with pytest.raises(RuntimeError):
        arena.track(torch.zeros(1))


def test_select_device():
    assert select_device("cpu") == torch.device("cpu")
    assert select_device("auto").type in ("cpu", "cuda", "mps")
