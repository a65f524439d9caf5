## parameter_loader.py

from abc import ABC, abstractmethod
from typing import Dict, Optional, Sequence

import numpy as np

from config import CONFIG, CHECKPOINT_PARAMS, layer_variable_names, output_variable_names


# --- 1. ABSTRACT INTERFACE ---
class AbstractParameterLoader(ABC):
    """
    Interface for anything that can produce the decoder's parameter tensors
    (remote checkpoint, local files, simulation).
    """

    @abstractmethod
    def get_all_variables(self) -> Dict[str, np.ndarray]:
        """
        Returns a mapping from checkpoint variable name to its float32 array.
        """
        pass


# --- 2. CONCRETE SIMULATION LOADER ---
class SimulatedParameterLoader(AbstractParameterLoader):
    """
    Random parameters with the real checkpoint's names and chaining shapes.
    Seeded so the same loader always yields the same weights.
    """

    def __init__(self, hidden_dims: Sequence[int] = CHECKPOINT_PARAMS['SIMULATED_HIDDEN_DIMS'],
                 seed: int = CHECKPOINT_PARAMS['RANDOM_SEED'],
                 input_dim: int = CONFIG['D_INPUT_DIM'],
                 output_dim: int = CONFIG['D_OUTPUT_DIM']):
        if len(hidden_dims) != CONFIG['NUM_LAYERS']:
            raise ValueError(f"Expected {CONFIG['NUM_LAYERS']} hidden widths, got {len(hidden_dims)}")
        self.hidden_dims = tuple(hidden_dims)
        self.seed = seed
        self.input_dim = input_dim
        self.output_dim = output_dim

    def get_all_variables(self) -> Dict[str, np.ndarray]:
        rng = np.random.RandomState(self.seed)
        widths = (self.input_dim,) + self.hidden_dims + (self.output_dim,)
        names = [layer_variable_names(i) for i in range(len(self.hidden_dims))]
        names.append(output_variable_names())

        variables = {}
        for (w_name, b_name), fan_in, fan_out in zip(names, widths[:-1], widths[1:]):
            # Glorot-style scale
            scale = np.sqrt(2.0 / (fan_in + fan_out))
            variables[w_name] = (rng.randn(fan_in, fan_out) * scale).astype(np.float32)
            variables[b_name] = (rng.randn(fan_out) * 0.01).astype(np.float32)
        return variables


# --- 3. EMBEDDINGS ---
def sample_embedding(seed: Optional[int] = None,
                     latent_range: float = CONFIG['LATENT_RANGE'],
                     dim: int = CONFIG['D_LATENT_DIM']) -> np.ndarray:
    """Uniform random point of the latent space, each value in [-range, range]."""
    rng = np.random.RandomState(seed)
    return rng.uniform(-latent_range, latent_range, dim).astype(np.float32)
