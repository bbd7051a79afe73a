#!/usr/bin/env python3
"""
NPU Segmentation - Command-line Entry Point

Runs one still image through a compiled segmentation graph on the
accelerator and writes the colorized class mask.
"""

import argparse
import sys

from common.config import BACKENDS, IMAGE_BACKENDS, build_config
from common.errors import PipelineError
from common.logging_utils import setup_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Single-image semantic segmentation on a neural accelerator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py model.rknn input.jpg --input-shape 256 256 3 --output-shape 256 256 2
  python main.py model.pt input.jpg --backend torch --input-shape 512 512 3 --image-backend opencv
  python main.py model.rknn input.jpg --config seg.json --save-metadata
        """
    )
    parser.add_argument("model_path", help="Path to the compiled model graph")
    parser.add_argument("image_path", help="Path to the input image")
    parser.add_argument("--output", dest="output_path", help="Output mask path (default: seg_mask.png)")
    parser.add_argument("--backend", choices=BACKENDS, help="Device backend")
    parser.add_argument("--image-backend", choices=IMAGE_BACKENDS, help="Image decoding backend")
    parser.add_argument("--input-shape", type=int, nargs=3, metavar=("H", "W", "C"),
                        help="Input tensor shape when the runtime cannot report it")
    parser.add_argument("--output-shape", type=int, nargs=3, metavar=("H", "W", "C"),
                        help="Output tensor shape when the runtime cannot report it")
    parser.add_argument("--palette", help="Palette preset name or JSON mapping {class: [r, g, b]}")
    parser.add_argument("--timeout", type=float, help="Abort inference after this many seconds")
    parser.add_argument("--device", help="Torch device for the torch backend (cpu/cuda)")
    parser.add_argument("--config", help="JSON configuration file")
    parser.add_argument("--save-metadata", action="store_true", default=None,
                        help="Write a JSON summary next to the mask")
    parser.add_argument("--comparison", dest="comparison_path",
                        help="Also save an input/mask comparison figure")
    parser.add_argument("--log-level", help="Logging level (default: INFO)")
    return parser


def main(argv=None) -> int:
    """Main application entry point"""
    args = build_parser().parse_args(argv)

    overrides = {
        'output_path': args.output_path,
        'backend': args.backend,
        'image_backend': args.image_backend,
        'input_shape': args.input_shape,
        'output_shape': args.output_shape,
        'palette': args.palette,
        'timeout': args.timeout,
        'device': args.device,
        'save_metadata': args.save_metadata,
        'comparison_path': args.comparison_path,
        'log_level': args.log_level,
    }

    try:
        config = build_config(args.config, overrides)
    except PipelineError as e:
        print(f"Error: {e}")
        return 1
    setup_logging(config.log_level)

    from inference.inference import SegmentationPipeline

    try:
        pipeline = SegmentationPipeline(config)
        result = pipeline.run(args.model_path, args.image_path)
    except PipelineError as e:
        print(f"Error: {e}")
        return 1

    print(f"Saved colored mask: {result.output_path}")
    print(f"Preprocess time: {result.timings.preprocess_ms:.2f} ms")
    print(f"Inference time: {result.timings.inference_ms:.2f} ms")
    print(f"Postprocess time: {result.timings.postprocess_ms:.2f} ms")
    return 0


if __name__ == "__main__":
    sys.exit(main())
