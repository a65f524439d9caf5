## font_model.py

import asyncio
import logging
from typing import Callable, Optional, Sequence

import numpy as np

from config import CACHE_PARAMS, ENGINE_PARAMS
from encoder import InferenceRequest, as_embedding
from engine import InferenceEngine, select_device
from errors import ModelNotLoaded
from parameter_loader import AbstractParameterLoader
from request_cache import RequestCache
from scheduler import ComputeQueue
from storage import ParameterStore

logger = logging.getLogger(__name__)


class FontModel:
    """
    Entry point for rendering glyphs.

        model = FontModel()
        model.load(SimulatedParameterLoader())
        grid = await model.get(0, embedding, 'A', priority=1, sink=RGBASurface())

    Identical (request id, embedding, character) requests share one
    computation; distinct ones run one at a time on the compute queue,
    highest priority first.
    """

    def __init__(self, engine: Optional[InferenceEngine] = None,
                 cache: Optional[RequestCache] = None,
                 queue: Optional[ComputeQueue] = None,
                 device: str = ENGINE_PARAMS['DEVICE']):
        self.engine = engine or InferenceEngine()
        self.cache = cache or RequestCache(CACHE_PARAMS['RETENTION'], CACHE_PARAMS['MAX_ENTRIES'])
        self.queue = queue or ComputeQueue()
        self.device = device

    def load(self, loader: AbstractParameterLoader) -> ParameterStore:
        """
        Fetches and validates the parameters, then installs them.
        Configuration errors (missing tensors, shape mismatch) surface here,
        before any request is accepted.
        """
        variables = loader.get_all_variables()
        store = ParameterStore(variables, device=select_device(self.device))
        self.engine.load(store)
        return store

    @property
    def loaded(self) -> bool:
        return self.engine.loaded

    def submit(self, request: InferenceRequest) -> asyncio.Future:
        def compute():
            return self.queue.run(request.priority, self.engine.infer,
                                  request.embedding, request.character)

        return self.cache.submit(request.key, compute, request.sink)

    async def get(self, request_id: int, embedding: Sequence[float], char: str,
                  priority: int = 0,
                  sink: Optional[Callable[[np.ndarray], None]] = None) -> np.ndarray:
        """Renders `char` in the style given by `embedding`, returning the 64x64 intensity grid."""
        # Reject bad input before it reaches the queue
        if not self.engine.loaded:
            raise ModelNotLoaded("Call load() before requesting glyphs")
        self.engine.char_index.id_of(char)
        request = InferenceRequest(request_id, as_embedding(embedding), char, priority, sink)
        return await self.submit(request)

    async def close(self):
        await self.queue.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
        return False
