## config.py

import os

import numpy as np

# --- 1. CORE ARCHITECTURE ---
CONFIG = {
    'NUM_LAYERS': 4,           # Number of stacked ReLU layers before the output layer
    'IMAGE_SIZE': 64,          # Output glyph is IMAGE_SIZE x IMAGE_SIZE, single channel
    'D_LATENT_DIM': 40,        # Dimensionality of the caller supplied embedding
    'NUM_CHARS': 62,           # A-Z, a-z, 0-9
    'LATENT_RANGE': 0.4,       # Embedding values are sampled from [-range, range]
    'MAX_INTENSITY': 255.0,

    # Checkpoint variable names
    'LAYER_WEIGHTS': 'Stack/fully_connected_{index}/weights',
    'LAYER_BIASES': 'Stack/fully_connected_{index}/biases',
    'OUTPUT_WEIGHTS': 'fully_connected/weights',
    'OUTPUT_BIASES': 'fully_connected/biases',
}

# Width of the layer stack input: embedding followed by the one-hot character
CONFIG['D_INPUT_DIM'] = CONFIG['D_LATENT_DIM'] + CONFIG['NUM_CHARS']
CONFIG['D_OUTPUT_DIM'] = CONFIG['IMAGE_SIZE'] * CONFIG['IMAGE_SIZE']

# --- 2. ENGINE PARAMETERS ---
ENGINE_PARAMS = {
    'DEVICE': os.environ.get('GLYPH_DEVICE', 'auto'),  # auto | cpu | cuda | mps
    'DTYPE': np.float32,
}

# --- 3. REQUEST CACHE PARAMETERS ---
CACHE_PARAMS = {
    'RETENTION': 'evict',      # evict: drop after delivery, retain: keep completed results (LRU)
    'MAX_ENTRIES': 256,        # Only used with RETENTION == 'retain'
}

# --- 4. CHECKPOINT PARAMETERS ---
CHECKPOINT_PARAMS = {
    'BASE_URL': os.environ.get(
        'GLYPH_CHECKPOINT_URL',
        'https://storage.googleapis.com/learnjs-data/checkpoint_zoo/fonts/'),
    'MANIFEST_FILE': 'manifest.json',
    'TIMEOUT_S': 30.0,
    'SIMULATED_HIDDEN_DIMS': (256, 256, 256, 256),
    'RANDOM_SEED': 42,
}


def layer_variable_names(index: int):
    """Checkpoint names of the (weights, biases) pair for stack layer `index` (0-based)."""
    return (CONFIG['LAYER_WEIGHTS'].format(index=index + 1),
            CONFIG['LAYER_BIASES'].format(index=index + 1))


def output_variable_names():
    return CONFIG['OUTPUT_WEIGHTS'], CONFIG['OUTPUT_BIASES']
