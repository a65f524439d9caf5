## sink.py

import logging
import os
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np
from PIL import Image

from config import CONFIG

logger = logging.getLogger(__name__)

IMAGE_SIZE = CONFIG['IMAGE_SIZE']


def expand_to_rgba(grid: np.ndarray) -> np.ndarray:
    """
    (H, W) intensities -> (H, W, 4) uint8 pixels with R = G = B = intensity, A = 255.
    Values are rounded to the nearest integer and clamped to [0, 255].
    """
    grid = np.asarray(grid, dtype=np.float32)
    if grid.ndim != 2:
        raise ValueError(f"Intensity grid must be 2-D, got shape {grid.shape}")
    gray = np.clip(np.rint(grid), 0, 255).astype(np.uint8)
    rgba = np.empty(grid.shape + (4,), dtype=np.uint8)
    rgba[..., 0] = gray
    rgba[..., 1] = gray
    rgba[..., 2] = gray
    rgba[..., 3] = 255
    return rgba


# --- 1. ABSTRACT INTERFACE ---
class ResultSink(ABC):
    """
    Consumer of a finished intensity grid. Any callable taking the grid can be
    used as a sink; subclasses get RGBA expansion for free.
    """

    def __call__(self, grid: np.ndarray) -> None:
        self.put_image_data(expand_to_rgba(grid))

    @abstractmethod
    def put_image_data(self, rgba: np.ndarray) -> None:
        pass


# --- 2. CONCRETE SINKS ---
class RGBASurface(ResultSink):
    """In-memory pixel buffer, the stand-in for a drawing canvas."""

    def __init__(self, width: int = IMAGE_SIZE, height: int = IMAGE_SIZE):
        self.pixels = np.zeros((height, width, 4), dtype=np.uint8)
        self.writes = 0

    def put_image_data(self, rgba: np.ndarray, x: int = 0, y: int = 0) -> None:
        h, w = rgba.shape[:2]
        if y + h > self.pixels.shape[0] or x + w > self.pixels.shape[1]:
            raise ValueError(f"Image of size {w}x{h} does not fit at ({x}, {y})")
        self.pixels[y:y + h, x:x + w] = rgba
        self.writes += 1

    def to_image(self) -> Image.Image:
        return Image.fromarray(self.pixels)


class PngSink(ResultSink):
    """Writes each delivered glyph to a PNG file."""

    def __init__(self, path: str, scale: Optional[int] = None):
        self.path = path
        self.scale = scale

    def put_image_data(self, rgba: np.ndarray) -> None:
        img = Image.fromarray(rgba)
        if self.scale:
            img = img.resize((img.width * self.scale, img.height * self.scale), Image.Resampling.NEAREST)
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        img.save(self.path)
        logger.info("Saved glyph image: %s", self.path)
