## checkpoint_provider.py

import logging
from typing import Dict, Optional

import numpy as np
import requests

from config import CHECKPOINT_PARAMS
from errors import CheckpointLoadError, ShapeMismatch

# Import the Abstract Interface
from parameter_loader import AbstractParameterLoader

logger = logging.getLogger(__name__)


class CheckpointLoader(AbstractParameterLoader):
    """
    Loads a deeplearn.js style checkpoint over HTTP.

    Layout:
        <base_url>/manifest.json   {"<var name>": {"filename": "...", "shape": [..]}, ...}
        <base_url>/<filename>      raw little-endian float32 values
    """

    def __init__(self, base_url: str = CHECKPOINT_PARAMS['BASE_URL'],
                 timeout: float = CHECKPOINT_PARAMS['TIMEOUT_S'],
                 session: Optional[requests.Session] = None):
        self.base_url = base_url if base_url.endswith('/') else base_url + '/'
        self.timeout = timeout
        self.session = session or requests.Session()

    def _fetch(self, name: str) -> requests.Response:
        url = self.base_url + name
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise CheckpointLoadError(f"Could not fetch {url}: {e}") from e
        return response

    def get_manifest(self) -> Dict[str, dict]:
        response = self._fetch(CHECKPOINT_PARAMS['MANIFEST_FILE'])
        try:
            manifest = response.json()
        except ValueError as e:
            raise CheckpointLoadError(f"Manifest at {self.base_url} is not valid JSON") from e
        if not isinstance(manifest, dict):
            raise CheckpointLoadError("Manifest must be a JSON object")
        return manifest

    def get_variable(self, name: str, entry: dict) -> np.ndarray:
        try:
            filename = entry['filename']
            shape = tuple(int(d) for d in entry['shape'])
        except (KeyError, TypeError, ValueError) as e:
            raise CheckpointLoadError(f"Malformed manifest entry for '{name}': {entry!r}") from e

        content = self._fetch(filename).content
        if len(content) % 4:
            raise CheckpointLoadError(f"'{name}': {len(content)} bytes is not a whole number of float32 values")
        values = np.frombuffer(content, dtype='<f4')
        expected = int(np.prod(shape)) if shape else 1
        if values.size != expected:
            raise ShapeMismatch(f"'{name}' has {values.size} values, manifest shape {shape} needs {expected}")
        return values.astype(np.float32).reshape(shape)

    def get_all_variables(self) -> Dict[str, np.ndarray]:
        logger.info("Loading checkpoint from %s", self.base_url)
        manifest = self.get_manifest()
        variables = {name: self.get_variable(name, entry) for name, entry in manifest.items()}
        logger.info("Loaded %d checkpoint variables", len(variables))
        return variables
