"""
Accuracy measurement and parameter sweeps against labelled boards.

A test data file lists one board per line as ``image | expected81``; lines
starting with ``#`` are ignored.
"""

import argparse
import itertools
import logging
import sys
from pathlib import Path
from typing import Any, Iterable, Sequence

import cv2
import numpy as np

from .config import ScanConfig
from .grid import GridNotFoundError
from .ocr import Recognizer, validate_puzzle
from .pipeline import scan
from .preprocess import rgb_from_bgr

logger = logging.getLogger(__name__)


def parse_test_data(test_data_file: str | Path) -> list[tuple[str, str]]:
    """
    Parse a test data file into (image filename, expected puzzle) pairs.

    Raises:
        ValueError: If an expected puzzle is not 81 characters of 0-9
    """
    test_cases = []

    with open(test_data_file, "r", encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue

            parts = line.split("|")
            if len(parts) != 2:
                raise ValueError(f"{test_data_file}:{line_no}: expected 'image | puzzle'")

            image_filename = parts[0].strip()
            expected = parts[1].strip()
            if not validate_puzzle(expected):
                raise ValueError(f"{test_data_file}:{line_no}: expected puzzle must be 81 digits")
            test_cases.append((image_filename, expected))

    return test_cases


def compare_puzzles(expected: str, actual: str) -> dict[str, Any]:
    """
    Compare expected and recognized puzzle strings.

    Args:
        expected: Ground-truth puzzle
        actual: Recognized puzzle

    Returns:
        Dictionary with counts, accuracy, precision, recall, F1 and the
        first ten error descriptions
    """
    if not validate_puzzle(expected) or not validate_puzzle(actual):
        raise ValueError("Both puzzles must be 81 characters of 0-9")

    correct = 0
    wrong = 0
    missed = 0
    false_positives = 0
    errors = []

    for i, (exp_val, act_val) in enumerate(zip(expected, actual)):
        row, col = divmod(i, 9)
        if exp_val == "0" and act_val == "0":
            continue
        if exp_val == act_val:
            correct += 1
        elif exp_val == "0":
            false_positives += 1
            errors.append(f"FP r{row}c{col}: expected empty, got {act_val}")
        elif act_val == "0":
            missed += 1
            errors.append(f"MISS r{row}c{col}: expected {exp_val}, got empty")
        else:
            wrong += 1
            errors.append(f"WRONG r{row}c{col}: expected {exp_val}, got {act_val}")

    total_filled = sum(1 for ch in expected if ch != "0")

    accuracy = correct / total_filled if total_filled > 0 else 0
    precision = correct / (correct + false_positives) if (correct + false_positives) > 0 else 0
    recall = correct / (correct + missed) if (correct + missed) > 0 else 0
    f1_score = 2 * (precision * recall) / (precision + recall) if (precision + recall) > 0 else 0

    return {
        "correct": correct,
        "wrong": wrong,
        "missed": missed,
        "false_positives": false_positives,
        "total_filled": total_filled,
        "cells_matching": sum(1 for e, a in zip(expected, actual) if e == a),
        "accuracy": accuracy,
        "precision": precision,
        "recall": recall,
        "f1_score": f1_score,
        "errors": errors[:10],
    }


def evaluate_config(cases: Sequence[tuple[np.ndarray, str]], config: ScanConfig,
                    recognizer: Recognizer | None = None) -> dict[str, Any]:
    """
    Scan every case with one config.

    Returns:
        Dictionary with the config, per-case comparisons and the total number
        of cells (out of 81 per case) that match the expected puzzle
    """
    per_case = []
    total_matching = 0

    for image, expected in cases:
        try:
            result = scan(image, config=config, recognizer=recognizer)
            actual = result.puzzle
        except GridNotFoundError as e:
            logger.warning(f"Board not found during sweep: {e}")
            actual = "0" * 81

        comparison = compare_puzzles(expected, actual)
        per_case.append({"actual": actual, "comparison": comparison})
        total_matching += comparison["cells_matching"]

    return {
        "config": config,
        "cases": per_case,
        "total_matching": total_matching,
        "total_cells": 81 * len(cases),
    }


def sweep(cases: Sequence[tuple[np.ndarray, str]], configs: Iterable[ScanConfig],
          recognizer: Recognizer | None = None) -> list[dict[str, Any]]:
    """
    Evaluate several configs and rank them by matching cells, best first.

    Ties keep the order in which the configs were given.
    """
    results = [evaluate_config(cases, config, recognizer) for config in configs]
    return sorted(results, key=lambda r: r["total_matching"], reverse=True)


def sweep_grid(base: ScanConfig | None = None,
               margins: Sequence[float] = (0.152, 0.153, 0.154),
               binarize_thresholds: Sequence[int] = (150, 155, 160),
               paddings: Sequence[int] = (20, 25)) -> list[ScanConfig]:
    """Cartesian product of the most sensitive recognition parameters."""
    if base is None:
        base = ScanConfig()
    return [
        base.replace(cell_margin=m, binarize_threshold=b, cell_padding=p)
        for m, b, p in itertools.product(margins, binarize_thresholds, paddings)
    ]


def load_cases(test_data_file: str | Path,
               images_dir: str | Path) -> list[tuple[np.ndarray, str]]:
    """Load the images listed in a test data file as RGB arrays."""
    cases = []
    for image_filename, expected in parse_test_data(test_data_file):
        image_path = Path(images_dir) / image_filename
        image = cv2.imread(str(image_path))
        if image is None:
            raise FileNotFoundError(f"Could not load image '{image_path}'")
        cases.append((rgb_from_bgr(image), expected))
    return cases


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for ``sudoku-scan-tune``."""
    parser = argparse.ArgumentParser(description="Sweep scan parameters over labelled boards")
    parser.add_argument("--data", required=True, help="Test data file ('image | expected81' per line)")
    parser.add_argument("--images", required=True, help="Directory containing the listed images")
    parser.add_argument("--top", type=int, default=5, help="Number of ranked configs to print (default: 5)")
    args = parser.parse_args(argv)

    try:
        cases = load_cases(args.data, args.images)
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    configs = sweep_grid()
    print(f"Testing {len(configs)} configs on {len(cases)} boards...")
    ranked = sweep(cases, configs)

    print("\n=== RANKED BY TOTAL ACCURACY ===\n")
    for i, entry in enumerate(ranked[:args.top], start=1):
        cfg = entry["config"]
        pct = round(entry["total_matching"] / entry["total_cells"] * 100) if entry["total_cells"] else 0
        print(
            f"{i}. margin={cfg.cell_margin} binarize={cfg.binarize_threshold} padding={cfg.cell_padding}: "
            f"{entry['total_matching']}/{entry['total_cells']} ({pct}%)"
        )

    best = ranked[0] if ranked else None
    if best is not None and best["total_matching"] == best["total_cells"]:
        print("\n[OK] Perfect config found")
    return 0


if __name__ == "__main__":
    sys.exit(main())
