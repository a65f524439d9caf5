## engine.py

import logging
import threading
import traceback
import weakref
from typing import Dict, List, Optional, Sequence

import numpy as np
import torch

from config import CONFIG, ENGINE_PARAMS
from encoder import CHARACTER_INDEX, CharacterIndex, as_embedding, one_hot
from errors import ComputeFailure, ModelNotLoaded
from model import GlyphDecoder, to_intensity
from storage import ParameterStore

logger = logging.getLogger(__name__)

IMAGE_SIZE = CONFIG['IMAGE_SIZE']
MAX_INTENSITY = CONFIG['MAX_INTENSITY']

# --- ALLOCATION COUNTER ---
# Number of arena-tracked tensors not yet freed, across all threads.
# Decremented by a weakref callback when the tensor is actually deallocated.
_live_tensors = 0
_live_lock = threading.Lock()


def live_tensor_count() -> int:
    return _live_tensors


# Keeps the weakrefs themselves alive so their callbacks fire
_refs: Dict[int, weakref.ref] = {}


def _on_tensor_freed(ref: weakref.ref):
    global _live_tensors
    with _live_lock:
        _refs.pop(id(ref), None)
        _live_tensors -= 1


def _register(tensor: torch.Tensor):
    global _live_tensors
    ref = weakref.ref(tensor, _on_tensor_freed)
    with _live_lock:
        _refs[id(ref)] = ref
        _live_tensors += 1


def select_device(name: str = ENGINE_PARAMS['DEVICE']) -> torch.device:
    """Resolves 'auto' to CUDA if available, else MPS (Mac), else CPU."""
    if name != 'auto':
        return torch.device(name)
    if torch.cuda.is_available():
        return torch.device("cuda")
    if torch.backends.mps.is_available():
        return torch.device("mps")
    return torch.device("cpu")


class TensorArena:
    """
    Scope for the tensors of a single inference call.

    Every tensor passed through `track` is referenced only by the arena (and the
    caller's locals) and is dropped when the `with` block exits, on the success
    and on the failure path alike.
    """

    def __init__(self, device: Optional[torch.device] = None):
        self.device = device
        self._tensors: List[torch.Tensor] = []
        self._closed = False

    def track(self, tensor: torch.Tensor) -> torch.Tensor:
        if self._closed:
            raise RuntimeError("Arena already released")
        self._tensors.append(tensor)
        _register(tensor)
        return tensor

    def __len__(self):
        return len(self._tensors)

    def release(self):
        if self._closed:
            return
        self._tensors.clear()
        self._closed = True
        if self.device is not None and self.device.type == 'cuda':
            torch.cuda.empty_cache()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False


class InferenceEngine:
    """
    Evaluates the glyph decoder for one (embedding, character) pair.
    infer() is synchronous; the ComputeQueue runs it on its worker thread.
    """

    def __init__(self, char_index: CharacterIndex = CHARACTER_INDEX):
        self.char_index = char_index
        self._store: Optional[ParameterStore] = None
        self._decoder: Optional[GlyphDecoder] = None
        self._load_lock = threading.Lock()

    def load(self, store: ParameterStore):
        """Installs the parameter store. Allowed exactly once."""
        with self._load_lock:
            if self._store is not None:
                raise RuntimeError("Parameters already loaded; the store is immutable once installed")
            self._decoder = GlyphDecoder(store).eval()
            self._store = store
        logger.info("Inference engine loaded on %s", store.device)

    @property
    def loaded(self) -> bool:
        return self._store is not None

    @property
    def store(self) -> ParameterStore:
        if self._store is None:
            raise ModelNotLoaded("Model parameters have not been loaded yet")
        return self._store

    def infer(self, embedding: Sequence[float], character: str) -> np.ndarray:
        """
        Returns the (IMAGE_SIZE, IMAGE_SIZE) float32 intensity grid, values in [0, 255].
        """
        store = self.store
        char_id = self.char_index.id_of(character)
        E = as_embedding(embedding)

        try:
            with TensorArena(store.device) as arena, torch.inference_mode():
                grid = self._forward(arena, store.device, E, char_id)
        except RuntimeError as e:
            # The cause is shared with every waiter; its frames must not hold this call's tensors
            traceback.clear_frames(e.__traceback__)
            raise ComputeFailure(f"Backend failed while rendering {character!r}: {e}") from e

        if not (np.all(grid >= 0.0) and np.all(grid <= MAX_INTENSITY)):
            raise ComputeFailure(f"Intensity out of range for {character!r}: "
                                 f"[{np.nanmin(grid)}, {np.nanmax(grid)}]")
        return grid

    def _forward(self, arena: TensorArena, device: torch.device,
                 E: np.ndarray, char_id: int) -> np.ndarray:
        track = arena.track

        # 1. Input vector: [embedding (40), one_hot (62)] -> (102,)
        E_t = track(torch.from_numpy(E).to(device))
        onehot = track(torch.from_numpy(one_hot(char_id)).to(device))
        x = track(torch.cat([E_t, onehot]))

        # 2. Layer stack + output layer -> (4096,) in (0, 1)
        raw = self._decoder(x, track)

        # 3. Pixel intensities, copied to host so nothing outlives the arena
        intensity = to_intensity(raw, track)
        return intensity.reshape(IMAGE_SIZE, IMAGE_SIZE).cpu().numpy().copy()
