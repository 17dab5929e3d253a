"""
Command-line interface for the stitch chart engine.
Extracts palettes from images and converts images into stitch grids.
"""

import os
import sys
import argparse
from typing import List, Optional

from .config import Config
from .extract import PaletteExtractor
from .grid import grid_summary, make_grid
from .mapping import map_to_palette
from .palette import Palette, get_bundled_palette
from .quantize import ImageQuantizer


def create_parser() -> argparse.ArgumentParser:
    """Create command-line argument parser."""
    parser = argparse.ArgumentParser(
        description="Turn reference photos into limited-palette stitch charts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
COMMANDS:
  extract  - Print representative colors of an image
  convert  - Quantize an image onto a stitch grid and print color usage

Examples:
  # Extract 8 colors and snap them to the bundled thread palette
  python -m stitchkit.cli extract photo.jpg --colors 8

  # Convert to a 120x90 chart using at most 16 threads
  python -m stitchkit.cli convert photo.jpg --width 120 --height 90 --max-colors 16

  # Use a custom palette and a YAML config
  python -m stitchkit.cli convert photo.png -W 80 -H 80 --palette threads.csv --config stitch.yaml

  # List the bundled palette
  python -m stitchkit.cli --list-palette
        """
    )

    parser.add_argument(
        "command",
        nargs="?",
        choices=["extract", "convert"],
        help="Operation to run"
    )
    parser.add_argument(
        "input",
        nargs="?",
        help="Input image file (JPG/PNG)"
    )

    # Extraction
    parser.add_argument(
        "--colors", "-k",
        type=int,
        default=8,
        help="Number of colors to extract (default: 8)"
    )

    # Conversion
    parser.add_argument(
        "--width", "-W",
        type=int,
        help="Grid width in cells (required for convert)"
    )
    parser.add_argument(
        "--height", "-H",
        type=int,
        help="Grid height in cells (required for convert)"
    )
    parser.add_argument(
        "--max-colors",
        type=int,
        help="Maximum number of palette colors in the chart (default from config: 20)"
    )
    parser.add_argument(
        "--smoothing",
        type=float,
        help="Smoothing strength 0-1 (default from config: 0.25)"
    )

    # Shared
    parser.add_argument(
        "--palette", "-p",
        type=str,
        help="Palette CSV with columns id,name,hex[,family,code] (default: bundled)"
    )
    parser.add_argument(
        "--config", "-c",
        type=str,
        help="YAML configuration file"
    )
    parser.add_argument(
        "--list-palette",
        action="store_true",
        help="List the bundled palette"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output"
    )

    return parser


def validate_arguments(args: argparse.Namespace) -> bool:
    """Validate command-line arguments."""
    if args.list_palette:
        return True

    if not args.command:
        print("Error: A command is required (extract or convert)")
        return False

    if not args.input:
        print("Error: Input image file is required")
        return False

    if not os.path.exists(args.input):
        print(f"Error: Input file not found: {args.input}")
        return False

    if args.palette and not os.path.exists(args.palette):
        print(f"Error: Palette file not found: {args.palette}")
        return False

    if args.command == "extract" and args.colors < 1:
        print("Error: --colors must be at least 1")
        return False

    if args.command == "convert":
        if not args.width or not args.height:
            print("Error: --width and --height are required for convert")
            return False
        if args.width < 1 or args.height < 1:
            print("Error: Grid dimensions must be positive")
            return False
        if args.max_colors is not None and args.max_colors < 1:
            print("Error: --max-colors must be at least 1")
            return False
        if args.smoothing is not None and not (0 <= args.smoothing <= 1):
            print("Error: --smoothing must be between 0 and 1")
            return False

    return True


def load_palette(args: argparse.Namespace) -> Palette:
    if args.palette:
        return Palette.from_csv(args.palette, verbose=args.verbose)
    return get_bundled_palette()


def load_config(args: argparse.Namespace) -> Config:
    overrides = {
        'verbose': args.verbose or None,
        'max_colors': args.max_colors,
        'smoothing': args.smoothing,
    }
    if args.config:
        return Config.from_yaml(args.config, **overrides)
    config = Config()
    config.apply_overrides(**overrides)
    config.validate()
    return config


def list_palette(palette: Palette):
    """List every color of a palette."""
    print("\n" + "=" * 60)
    print(f"PALETTE ({len(palette)} colors)")
    print("=" * 60)

    for family in palette.families() + [None]:
        if family:
            print(f"\n{family}:")
        for color in palette:
            if color.family != family:
                continue
            code = f"{color.code}: " if color.code else ""
            print(f"  [{color.id:>3}] {code}{color.name} ({color.hex})")

    print("\n" + "=" * 60)


def run_extract(args: argparse.Namespace, config: Config) -> bool:
    """Extract colors and show the closest palette entries."""
    hexes = PaletteExtractor(config).extract_from_image(args.input, args.colors)
    if not hexes:
        print("[WARN] No opaque pixels to extract colors from")
        return True

    palette = load_palette(args)
    picked = map_to_palette(hexes, palette)

    print(f"\nExtracted {len(hexes)} colors:")
    for i, hex_value in enumerate(hexes):
        line = f"  {hex_value}"
        if i < len(picked):
            color = palette.get_color_by_id(picked[i])
            code = f" {color.code}" if color.code else ""
            line += f"  ->{code} {color.name} ({color.hex})"
        print(line)
    return True


def run_convert(args: argparse.Namespace, config: Config) -> bool:
    """Quantize the image onto a fresh grid and print usage statistics."""
    palette = load_palette(args)

    print("\n" + "=" * 60)
    print("STITCH CHART CONVERSION")
    print("=" * 60)
    print(f"Input: {args.input}")
    print(f"Grid: {args.width} x {args.height} ({args.width * args.height:,} cells)")
    print(f"Palette: {len(palette)} colors")
    print(f"Max colors: {config.quantize.max_colors}")
    print(f"Smoothing: {config.quantize.smoothing:.2f}")
    print("-" * 60)

    grid = make_grid(args.width, args.height)
    result = ImageQuantizer(palette, config).quantize(args.input, grid)
    summary = grid_summary(result, palette)

    print("\n[OK] CONVERSION COMPLETE")
    print(f"Stitched cells: {summary['filled_cells']:,} of {summary['total_cells']:,}")
    print(f"Colors used: {len(summary['colors'])}")
    print("\nColor usage:")
    for entry in summary['colors']:
        label = entry['code'] or entry['name'] or entry['id']
        print(f"  {label:>8}  {entry['hex'] or '':8}  {entry['count']:>7,}  "
              f"{entry['percentage']:5.1f}%")
    return True


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.list_palette:
        list_palette(load_palette(args))
        return

    if not validate_arguments(args):
        sys.exit(1)

    try:
        config = load_config(args)
        if args.command == "extract":
            success = run_extract(args, config)
        else:
            success = run_convert(args, config)
    except (ValueError, FileNotFoundError, OSError) as e:
        print(f"\n[X] Error: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        success = False

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
