## render.py

import argparse
import asyncio
import logging
import os

import numpy as np

from checkpoint_provider import CheckpointLoader
from config import CHECKPOINT_PARAMS, CONFIG
from font_model import FontModel
from parameter_loader import SimulatedParameterLoader, sample_embedding
from sink import PngSink


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Render glyphs from a latent font embedding.")
    parser.add_argument("--chars", default="AaBb0123", help="Characters to render (A-Z, a-z, 0-9)")
    parser.add_argument("--out", default="glyphs", help="Output directory for PNG files")
    parser.add_argument("--seed", type=int, default=None,
                        help="Seed for the random embedding; omit for the all-zero embedding")
    parser.add_argument("--checkpoint", default=CHECKPOINT_PARAMS['BASE_URL'],
                        help="Base URL of the checkpoint (manifest.json + variable files)")
    parser.add_argument("--simulated", action="store_true",
                        help="Use seeded random weights instead of downloading the checkpoint")
    parser.add_argument("--priority", type=int, default=0)
    parser.add_argument("--scale", type=int, default=1, help="Nearest-neighbour upscale factor for the PNGs")
    parser.add_argument("--device", default="auto", help="auto | cpu | cuda | mps")
    return parser.parse_args(argv)


async def render(args) -> int:
    if args.seed is None:
        embedding = np.zeros(CONFIG['D_LATENT_DIM'], dtype=np.float32)
    else:
        embedding = sample_embedding(args.seed)

    loader = SimulatedParameterLoader() if args.simulated else CheckpointLoader(args.checkpoint)

    async with FontModel(device=args.device) as model:
        store = model.load(loader)
        print(f"Model loaded: layer widths {store.layer_widths} on {store.device}")

        pending = []
        for request_id, ch in enumerate(args.chars):
            path = os.path.join(args.out, f"{ord(ch):03d}_{ch}.png")
            pending.append(model.get(request_id, embedding, ch, args.priority, PngSink(path, args.scale)))

        results = await asyncio.gather(*pending, return_exceptions=True)

    failed = 0
    for ch, result in zip(args.chars, results):
        if isinstance(result, Exception):
            failed += 1
            print(f"  {ch!r}: FAILED ({result})")
        else:
            print(f"  {ch!r}: ok, mean intensity {result.mean():.1f}")
    print(f"Rendered {len(results) - failed}/{len(results)} glyphs into {args.out}")
    return 1 if failed else 0


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(name)s: %(message)s")
    raise SystemExit(asyncio.run(render(parse_args())))
