## encoder.py

import hashlib
import string
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Sequence, Tuple

import numpy as np

from config import CONFIG
from errors import InvalidCharacter, InvalidEmbedding

# --- 1. CHARACTER INDEX ---
# Order matters: the checkpoint was trained with A-Z, then a-z, then 0-9.
SUPPORTED_RANGES = (string.ascii_uppercase, string.ascii_lowercase, string.digits)


class CharacterIndex:
    """
    Bijection between the 62 supported glyph characters and class ids.
    A -> 0 ... Z -> 25, a -> 26 ... z -> 51, 0 -> 52 ... 9 -> 61
    """

    def __init__(self, ranges: Sequence[str] = SUPPORTED_RANGES):
        self._ids: Dict[str, int] = {}
        for chars in ranges:
            for ch in chars:
                self._ids[ch] = len(self._ids)
        self._chars: Tuple[str, ...] = tuple(self._ids)

    def id_of(self, char) -> int:
        if not isinstance(char, str) or len(char) != 1:
            raise InvalidCharacter(char)
        try:
            return self._ids[char]
        except KeyError:
            raise InvalidCharacter(char) from None

    def char_of(self, char_id: int) -> str:
        if not 0 <= char_id < len(self._chars):
            raise IndexError(f"Character id {char_id} out of range [0, {len(self._chars) - 1}]")
        return self._chars[char_id]

    @property
    def characters(self) -> Tuple[str, ...]:
        return self._chars

    def __len__(self):
        return len(self._chars)

    def __contains__(self, char):
        return isinstance(char, str) and char in self._ids


# Built once at import, shared by every engine
CHARACTER_INDEX = CharacterIndex()


def one_hot(char_id: int, depth: int = CONFIG['NUM_CHARS']) -> np.ndarray:
    """Float32 vector of length `depth` with a single 1 at `char_id`."""
    if not 0 <= char_id < depth:
        raise IndexError(f"Class id {char_id} out of range for depth {depth}")
    vec = np.zeros(depth, dtype=np.float32)
    vec[char_id] = 1.0
    return vec


# --- 2. EMBEDDINGS ---
def as_embedding(embedding: Sequence[float], dim: int = CONFIG['D_LATENT_DIM']) -> np.ndarray:
    """
    Returns a float32 copy of the caller's embedding after checking its length.
    Never returns the caller's own buffer.
    """
    try:
        E = np.array(embedding, dtype=np.float32).reshape(-1)
    except (TypeError, ValueError) as e:
        raise InvalidEmbedding(f"Embedding is not a sequence of numbers: {e}") from e
    if E.shape[0] != dim:
        raise InvalidEmbedding(f"Embedding has {E.shape[0]} values, expected {dim}")
    if not np.all(np.isfinite(E)):
        raise InvalidEmbedding("Embedding contains NaN or infinite values")
    return E


def embedding_digest(embedding: np.ndarray) -> str:
    """Content hash of an embedding; a mutated embedding gets a new digest."""
    E = np.ascontiguousarray(embedding, dtype=np.float32)
    return hashlib.blake2b(E.tobytes(), digest_size=16).hexdigest()


# --- 3. REQUESTS & KEYS ---
@dataclass(frozen=True)
class RequestKey:
    request_id: int
    embedding_digest: str
    character: str


@dataclass(frozen=True)
class InferenceRequest:
    """
    One glyph request. (embedding, character) is what to compute,
    `sink` is what to do with the resulting intensity grid.
    """
    request_id: int
    embedding: np.ndarray
    character: str
    priority: int = 0
    sink: Optional[Callable[[np.ndarray], None]] = None

    @property
    def key(self) -> RequestKey:
        return encode_to_key(self.request_id, self.embedding, self.character)


def encode_to_key(request_id: int, embedding: np.ndarray, character: str) -> RequestKey:
    """Deduplication key for a request: id + embedding content + character."""
    return RequestKey(int(request_id), embedding_digest(embedding), character)
