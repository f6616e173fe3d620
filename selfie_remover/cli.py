"""
Local runner: removes the background of one image and writes the cut-out
and its mask as PNGs. Bypasses the HTTP layer.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import List, Optional

from . import config
from .errors import BackgroundRemoverError
from .pipeline import BackgroundRemover, MaskOptions
from .segmenter import TorchScriptSegmenter

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Remove the background from a photo of a person")
    parser.add_argument("--input", required=True, help="Path to the input image")
    parser.add_argument("--output-dir", required=True, help="Directory for the output PNGs")
    parser.add_argument("--model", default=None, help="TorchScript checkpoint (default: SEGMENTER_MODEL_PATH)")
    parser.add_argument("--no-smooth-edges", action="store_true", help="Write a hard-edged mask")
    parser.add_argument("--invert", action="store_true", help="Keep the background instead of the person")
    parser.add_argument("--strategy", default=None, choices=sorted(config.SMOOTHING_STRATEGIES), help="Edge smoothing strategy")
    parser.add_argument("--image-name", default="processed-image", help="Base name of the cut-out PNG")
    parser.add_argument("--mask-image-name", default="mask-image", help="Base name of the mask PNG")
    return parser.parse_args(argv)


async def run(args: argparse.Namespace, settings: config.Settings) -> List[Path]:
    input_path = Path(args.input)
    if not input_path.exists():
        raise FileNotFoundError(f"Input file not found: {input_path}")

    segmenter = TorchScriptSegmenter(
        model_path=Path(args.model) if args.model else settings.segmenter_model_path,
        device=settings.segmenter_device,
        max_long_edge=settings.segmenter_max_long_edge,
        threshold=settings.foreground_threshold,
    )
    options = MaskOptions(
        smooth_edges=not args.no_smooth_edges,
        inverted=args.invert,
        strategy=args.strategy or settings.mask_smoothing_strategy,
    )
    remover = BackgroundRemover(segmenter, options=options, settings=settings)
    result = await remover.process(input_path.read_bytes())

    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    processed_path = output_dir / f"{args.image_name}.png"
    mask_path = output_dir / f"{args.mask_image_name}.png"
    processed_path.write_bytes(result.processed_encoded)
    mask_path.write_bytes(result.mask_encoded)
    return [processed_path, mask_path]


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    settings = config.get_settings()
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
    try:
        written = asyncio.run(run(args, settings))
    except (BackgroundRemoverError, FileNotFoundError) as exc:
        logger.error("%s", exc)
        return 1
    for path in written:
        print(f"Wrote {path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
