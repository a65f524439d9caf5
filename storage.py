## storage.py

import logging
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

import numpy as np
import torch

from config import CONFIG, ENGINE_PARAMS, layer_variable_names, output_variable_names
from errors import MissingParameter, ShapeMismatch

logger = logging.getLogger(__name__)

N_LAYERS = CONFIG['NUM_LAYERS']
D_IN = CONFIG['D_INPUT_DIM']
D_OUT = CONFIG['D_OUTPUT_DIM']
DTYPE = ENGINE_PARAMS['DTYPE']


class ParameterStore:
    """
    Read-only layer parameters, built once from a loader's name -> array mapping.

    A bad checkpoint fails here, at load time: every variable must be present
    and the shapes must chain D_IN -> w_1 -> ... -> w_N -> D_OUT.
    """

    def __init__(self, variables: Mapping[str, np.ndarray],
                 num_layers: int = N_LAYERS,
                 input_dim: int = D_IN,
                 output_dim: int = D_OUT,
                 device: Optional[torch.device] = None):
        self.num_layers = num_layers
        self.device = torch.device(device) if device is not None else torch.device('cpu')

        names = [layer_variable_names(i) for i in range(num_layers)]
        names.append(output_variable_names())

        tensors: Dict[str, torch.Tensor] = {}
        widths = [input_dim]
        for w_name, b_name in names:
            W = self._to_tensor(variables, w_name)
            b = self._to_tensor(variables, b_name).reshape(-1)

            if W.dim() != 2:
                raise ShapeMismatch(f"'{w_name}' must be 2-D, got shape {tuple(W.shape)}")
            if W.shape[0] != widths[-1]:
                raise ShapeMismatch(
                    f"'{w_name}' expects input width {W.shape[0]}, "
                    f"previous layer produces {widths[-1]}")
            if b.shape[0] != W.shape[1]:
                raise ShapeMismatch(
                    f"'{b_name}' has length {b.shape[0]}, "
                    f"'{w_name}' produces {W.shape[1]}")

            tensors[w_name] = W
            tensors[b_name] = b
            widths.append(W.shape[1])

        if widths[-1] != output_dim:
            raise ShapeMismatch(f"Output layer produces {widths[-1]} values, expected {output_dim}")

        self._tensors = MappingProxyType(tensors)
        self._names = tuple(names)
        self.layer_widths: Tuple[int, ...] = tuple(widths)

        n_params = sum(t.numel() for t in tensors.values())
        logger.info("Parameter store ready: widths %s, %d parameters on %s",
                    self.layer_widths, n_params, self.device)

    def _to_tensor(self, variables: Mapping[str, np.ndarray], name: str) -> torch.Tensor:
        if name not in variables:
            raise MissingParameter(name)
        arr = np.array(variables[name], dtype=DTYPE)
        tensor = torch.from_numpy(arr).to(self.device)
        tensor.requires_grad_(False)
        return tensor

    def layer_parameters(self, index: int) -> Tuple[torch.Tensor, torch.Tensor]:
        """(weights, biases) of stack layer `index` (0-based)."""
        if not 0 <= index < self.num_layers:
            raise IndexError(f"Layer index {index} out of range [0, {self.num_layers - 1}]")
        w_name, b_name = self._names[index]
        return self._tensors[w_name], self._tensors[b_name]

    def output_parameters(self) -> Tuple[torch.Tensor, torch.Tensor]:
        w_name, b_name = self._names[-1]
        return self._tensors[w_name], self._tensors[b_name]

    @property
    def tensors(self) -> Mapping[str, torch.Tensor]:
        return self._tensors

    def __len__(self):
        return len(self._tensors)
