"""
Command-line interface for the Sudoku scan pipeline.

This module provides the main entry point for processing Sudoku images
through the complete pipeline: board detection -> cell extraction -> digit
recognition.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

import cv2
import pytesseract

from .cells import extract_cells
from .config import ScanConfig, load_config
from .grid import GridNotFoundError, create_rect_overlay, crop_to_rectangle, edge_map
from .ocr import DIGIT_WHITELIST, MIN_GIVENS, TesseractRecognizer, count_givens, has_enough_givens, print_grid, tesseract_version, to_grid
from .pipeline import ScanStatus, iter_scan
from .preprocess import rgb_from_bgr, stretch_contrast


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Extract a Sudoku puzzle from an image",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sudoku-scan --image data/raw/example.jpg --out out
  sudoku-scan --image data/raw/example.jpg --out out --save-cells --debug
  sudoku-scan --image board_only.png --skip-detection --margin 0.12
        """
    )

    parser.add_argument(
        "--image",
        required=True,
        help="Path to input Sudoku image"
    )

    parser.add_argument(
        "--out",
        default="out",
        help="Output directory for results (default: out)"
    )

    parser.add_argument(
        "--config",
        help="JSON file with scan settings; command-line flags override it"
    )

    parser.add_argument(
        "--margin",
        type=float,
        help="Fraction of each cell removed from every side (default: 0.154)"
    )

    parser.add_argument(
        "--min-conf",
        type=float,
        help="Minimum recognition confidence 0-100 (default: 1)"
    )

    parser.add_argument(
        "--no-preprocess",
        dest="preprocess",
        action="store_false",
        default=None,
        help="Skip board contrast stretching"
    )

    parser.add_argument(
        "--skip-detection",
        action="store_true",
        help="Treat the input as already cropped to the board"
    )

    parser.add_argument(
        "--workers",
        type=int,
        help="Number of parallel recognition workers (default: CPU count)"
    )

    parser.add_argument(
        "--timeout",
        type=float,
        help="Seconds allowed per cell recognition (default: 10)"
    )

    parser.add_argument(
        "--whitelist",
        action="store_true",
        help="Restrict Tesseract to the digits 1-9"
    )

    parser.add_argument(
        "--save-cells",
        action="store_true",
        help="Save all 81 cell crops to <out>/cells/"
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Save edge map and rectangle overlay"
    )

    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging"
    )

    return parser


def resolve_config(args: argparse.Namespace) -> ScanConfig:
    """Defaults, then the config file, then command-line flags."""
    config = load_config(args.config) if args.config else ScanConfig()

    changes = {}
    if args.margin is not None:
        changes["cell_margin"] = args.margin
    if args.min_conf is not None:
        changes["min_confidence"] = args.min_conf
    if args.preprocess is not None:
        changes["preprocess"] = args.preprocess
    if args.skip_detection:
        changes["skip_board_detection"] = True
    if args.workers is not None:
        changes["max_workers"] = args.workers
    if args.timeout is not None:
        changes["recognition_timeout"] = args.timeout

    return config.replace(**changes) if changes else config


def write_puzzle(output_dir: Path, stem: str, puzzle: str) -> None:
    """Save the puzzle as a 9x9 JSON list of lists and as a flat string."""
    grid = to_grid(puzzle)

    puzzle_json = output_dir / f"{stem}_puzzle.json"
    with open(puzzle_json, "w") as f:
        f.write("[\n")
        for i, row in enumerate(grid):
            f.write("  " + json.dumps(row))
            if i < len(grid) - 1:
                f.write(",")
            f.write("\n")
        f.write("]")
    print(f"  Saved: {puzzle_json}")

    puzzle_flat = output_dir / f"{stem}_puzzle_flat.txt"
    with open(puzzle_flat, "w") as f:
        f.write(puzzle)
    print(f"  Saved: {puzzle_flat}")


def _to_bgr(image):
    return image if image.ndim == 2 else cv2.cvtColor(image[..., :3], cv2.COLOR_RGB2BGR)


def save_artifacts(output_dir: Path, stem: str, image, result, config: ScanConfig,
                   save_cells: bool, debug: bool) -> None:
    """Write the board crop and, on request, the edge map, overlay and cell crops."""
    board = crop_to_rectangle(image, result.rect) if result.rect is not None else image

    board_path = output_dir / f"{stem}_board.png"
    cv2.imwrite(str(board_path), _to_bgr(board))
    print(f"  Saved: {board_path}")

    if debug and result.rect is not None:
        edges = edge_map(image, config.detection)
        edges_path = output_dir / f"{stem}_edges.png"
        overlay_path = output_dir / f"{stem}_overlay.png"
        cv2.imwrite(str(edges_path), edges)
        cv2.imwrite(str(overlay_path), _to_bgr(create_rect_overlay(image, result.rect)))
        print(f"  Saved: {edges_path}")
        print(f"  Saved: {overlay_path}")

    if save_cells:
        cells_dir = output_dir / "cells"
        cells_dir.mkdir(parents=True, exist_ok=True)
        processed = stretch_contrast(board) if config.preprocess else board
        cells = extract_cells(processed, config.cell_margin, config.target_size)
        for i, cell in enumerate(cells):
            row, col = divmod(i, 9)
            cv2.imwrite(str(cells_dir / f"{stem}_r{row}_c{col}.png"), _to_bgr(cell))
        print(f"  Saved 81 cells to: {cells_dir}")


def main(argv=None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(name)s %(levelname)s: %(message)s")

    input_path = Path(args.image)
    if not input_path.exists():
        print(f"Error: Input file '{input_path}' not found", file=sys.stderr)
        return 1

    try:
        config = resolve_config(args)
    except (OSError, ValueError) as e:
        print(f"Error: Invalid configuration: {e}", file=sys.stderr)
        return 1

    stem = input_path.stem
    output_dir = Path(args.out)
    output_dir.mkdir(parents=True, exist_ok=True)

    print(f"Loading image: {input_path}")
    image_bgr = cv2.imread(str(input_path))
    if image_bgr is None:
        print(f"Error: Could not load image '{input_path}'", file=sys.stderr)
        return 1
    image = rgb_from_bgr(image_bgr)

    try:
        print(f"[INFO] {tesseract_version()}")
    except (pytesseract.TesseractNotFoundError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Tesseract is not available. Please install the tesseract binary.", file=sys.stderr)
        return 3

    result = None
    last_status = None
    recognized = 0
    recognizer = TesseractRecognizer(
        whitelist=DIGIT_WHITELIST if args.whitelist else None,
        timeout=config.recognition_timeout,
    )
    for event in iter_scan(image, config=config, recognizer=recognizer):
        if event.status is ScanStatus.ERROR:
            print(f"Error: {event.message}", file=sys.stderr)
            print("Please ensure the image contains a clear Sudoku puzzle with visible grid lines",
                  file=sys.stderr)
            return 2
        if event.status is not last_status:
            print(f"Stage: {event.status.value}...")
            last_status = event.status
        if event.status is ScanStatus.RECOGNIZING:
            recognized += 1
            if recognized % 9 == 0:
                print(f"  {event.progress:.0f}%")
        if event.status is ScanStatus.COMPLETE:
            result = event.result

    print(f"[OK] Board found via {result.method}")
    print(f"[OK] Recognized {count_givens(result.puzzle)} digits, confidence {result.confidence:.1f}")
    print("\nRecognized Sudoku Grid:")
    print_grid(result.puzzle)

    print("Saving artifacts...")
    try:
        write_puzzle(output_dir, stem, result.puzzle)
        save_artifacts(output_dir, stem, image, result, config, args.save_cells, args.debug)
    except (OSError, GridNotFoundError, ValueError) as e:
        print(f"Error saving artifacts: {e}", file=sys.stderr)
        return 1

    if not has_enough_givens(result.puzzle):
        print(f"Warning: fewer than {MIN_GIVENS} digits recognized; "
              "the scan is probably incomplete, try again with a sharper image")

    print(f"\n[OK] Processing complete! Check output directory: {output_dir}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
