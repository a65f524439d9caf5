## errors.py


class GlyphError(Exception):
    """Base class for every error raised by the glyph renderer."""


# --- PER-REQUEST ERRORS ---
class InvalidCharacter(GlyphError, ValueError):
    """Requested glyph is outside the A-Z, a-z, 0-9 set."""

    def __init__(self, char):
        super().__init__(f"Invalid character {char!r}: expected one of A-Z, a-z, 0-9")
        self.char = char


class InvalidEmbedding(GlyphError, ValueError):
    pass


class ModelNotLoaded(GlyphError, RuntimeError):
    """Inference attempted before the parameter store was installed."""


class ComputeFailure(GlyphError, RuntimeError):
    """The numeric backend failed while evaluating the network."""


# --- CONFIGURATION ERRORS (fail fast at load time) ---
class ConfigurationError(GlyphError):
    pass


class MissingParameter(ConfigurationError, KeyError):

    def __init__(self, name: str):
        super().__init__(name)
        self.name = name

    def __str__(self):
        return f"Checkpoint is missing parameter '{self.name}'"


class ShapeMismatch(ConfigurationError, ValueError):
    """Loaded tensors do not chain through the layer stack."""


class CheckpointLoadError(ConfigurationError):
    """The checkpoint could not be fetched or decoded."""
