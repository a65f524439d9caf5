## model.py

from typing import Callable

import torch
import torch.nn as nn

from config import CONFIG
from storage import ParameterStore

MAX_INTENSITY = CONFIG['MAX_INTENSITY']


def _keep(tensor: torch.Tensor) -> torch.Tensor:
    return tensor


# ------------------------------------------------
# I. GLYPH DECODER NETWORK
# ------------------------------------------------
class GlyphDecoder(nn.Module):
    """
    Feed-forward glyph decoder evaluated directly on the ParameterStore tensors.
    Input: [embedding, one_hot(char)] (102 dims)
    Output: per-pixel activation in (0, 1) (4096 dims)

    The decoder owns no parameters of its own; it reads the shared, read-only
    store and never writes to it.
    """
    def __init__(self, store: ParameterStore):
        super(GlyphDecoder, self).__init__()
        self.store = store
        self.relu = nn.ReLU()
        self.sigmoid = nn.Sigmoid()

    def forward(self, x: torch.Tensor, track: Callable[[torch.Tensor], torch.Tensor] = _keep):
        # x shape: (102,)
        for i in range(self.store.num_layers):
            W, b = self.store.layer_parameters(i)
            x = track(self.relu(x @ W + b))

        W_out, b_out = self.store.output_parameters()
        # output shape: (4096,)
        return track(self.sigmoid(x @ W_out + b_out))


# ------------------------------------------------
# II. ACTIVATION -> PIXEL INTENSITY
# ------------------------------------------------
def to_intensity(raw: torch.Tensor, track: Callable[[torch.Tensor], torch.Tensor] = _keep) -> torch.Tensor:
    """
    255 - 255 * raw: higher activation gives a darker pixel.
    The inversion is how the checkpoint was trained to be displayed.
    """
    scaled = track(raw * MAX_INTENSITY)
    return track(MAX_INTENSITY - scaled)
