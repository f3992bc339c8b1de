"""
OCR module for single-digit recognition with Tesseract.

This module provides the adapter around the external recognition engine,
the per-cell preprocessing that feeds it, and the policy that turns raw
recognized text into a digit 1-9.
"""

import logging
import re
from typing import NamedTuple, Protocol

import numpy as np
import pytesseract

from .cells import CELL_COUNT, GRID_SIZE, add_padding
from .config import ScanConfig
from .preprocess import binarize, enhance_contrast

logger = logging.getLogger(__name__)

DIGIT_WHITELIST = "123456789"
PSM_SINGLE_CHAR = 10
MIN_GIVENS = 17

# Glyphs Tesseract commonly returns for printed digits
DIGIT_CORRECTIONS = {
    "l": 1, "I": 1, "|": 1, "i": 1, "!": 1,
    "Z": 2, "z": 2,
    "E": 3,
    "A": 4, "h": 4,
    "S": 5, "s": 5,
    "G": 6, "b": 6,
    "T": 7, "/": 7, "?": 7, ")": 7, "]": 7, "J": 7, "j": 7,
    "B": 8,
    "g": 9, "q": 9,
}

_DIGIT_RE = re.compile(r"[1-9]")


class Recognition(NamedTuple):
    """Raw engine output for one cell."""
    text: str
    confidence: float  # 0-100


class Recognizer(Protocol):
    """Anything that can read a single character from a prepared cell image."""

    def recognize(self, image: np.ndarray) -> Recognition:
        ...


class TesseractRecognizer:
    """
    Tesseract in single-character mode.

    No character whitelist by default: with the cell contrast enhancement
    Tesseract does better unconstrained, and its misreads are mapped back to
    digits by parse_digit. Pass ``whitelist=DIGIT_WHITELIST`` to restrict it.
    A ``timeout`` in seconds kills a stuck engine process (0 disables it).

    Instances hold only configuration, so one recognizer can be shared by
    the worker threads of a scan.
    """

    def __init__(self, whitelist: str | None = None, psm: int = PSM_SINGLE_CHAR,
                 lang: str = "eng", timeout: float = 0):
        self.whitelist = whitelist
        self.psm = psm
        self.lang = lang
        self.timeout = timeout

    @property
    def config(self) -> str:
        options = f"--psm {self.psm}"
        if self.whitelist:
            options += f" -c tessedit_char_whitelist={self.whitelist}"
        return options

    def recognize(self, image: np.ndarray) -> Recognition:
        """
        Run Tesseract on a prepared cell image.

        Args:
            image: Grayscale or RGB uint8 cell image

        Returns:
            Recognition with the joined text and the mean word confidence

        Raises:
            RuntimeError: If Tesseract times out
            pytesseract.TesseractError: If the engine fails
        """
        data = pytesseract.image_to_data(
            image,
            lang=self.lang,
            config=self.config,
            output_type=pytesseract.Output.DICT,
            timeout=self.timeout,
        )

        words = []
        confidences = []
        for text, conf in zip(data.get("text", []), data.get("conf", [])):
            text = str(text).strip()
            conf = float(conf)
            if text and conf >= 0:
                words.append(text)
                confidences.append(conf)

        confidence = sum(confidences) / len(confidences) if confidences else 0.0
        return Recognition("".join(words), confidence)


def tesseract_version() -> str:
    """Human-readable Tesseract version string."""
    return f"Tesseract {pytesseract.get_tesseract_version()}"


def check_tesseract_installation() -> bool:
    """True if the Tesseract binary can be found and queried."""
    try:
        pytesseract.get_tesseract_version()
    except (pytesseract.TesseractNotFoundError, OSError) as e:
        logger.warning(f"Tesseract not available: {e}")
        return False
    return True


def prepare_cell(cell: np.ndarray, config: ScanConfig | None = None) -> np.ndarray:
    """
    Preprocess a cell for recognition: contrast -> binarize -> padding.

    Works on copies; the extracted cell is never modified.

    Args:
        cell: Extracted cell image
        config: Scan configuration

    Returns:
        Image to hand to the recognizer
    """
    if config is None:
        config = ScanConfig()
    prepared = cell
    if config.enhance_cells:
        prepared = enhance_contrast(prepared, config.contrast_factor)
        prepared = binarize(prepared, config.binarize_threshold)
    return add_padding(prepared, config.cell_padding)


def parse_digit(text: str) -> int | None:
    """
    Map raw recognized text to a digit 1-9.

    Order: a lone digit, then the first digit anywhere in the text, then the
    first character found in the misrecognition table. Text holding a letter
    the table does not know is treated as a word, not a misread digit.

    Args:
        text: Raw engine output

    Returns:
        Digit 1-9, or None if nothing maps to a digit
    """
    if not text:
        return None

    clean = text.strip()
    if len(clean) == 1 and _DIGIT_RE.match(clean):
        return int(clean)

    match = _DIGIT_RE.search(clean)
    if match:
        return int(match.group(0))

    if any(char.isalpha() and char not in DIGIT_CORRECTIONS for char in clean):
        return None

    for char in clean:
        if char in DIGIT_CORRECTIONS:
            return DIGIT_CORRECTIONS[char]

    return None


def resolve_digit(recognition: Recognition, min_confidence: float) -> int | None:
    """Digit for a recognition, or None if unparseable or below ``min_confidence``."""
    digit = parse_digit(recognition.text)
    if digit is None or recognition.confidence < min_confidence:
        return None
    return digit


def validate_puzzle(puzzle: str) -> bool:
    """True if ``puzzle`` is 81 characters of '0'-'9'."""
    return (
        isinstance(puzzle, str)
        and len(puzzle) == CELL_COUNT
        and all("0" <= ch <= "9" for ch in puzzle)
    )


def to_grid(puzzle: str) -> list[list[int]]:
    """
    Convert an 81-character puzzle string to a 9x9 grid.

    Args:
        puzzle: Row-major puzzle string, '0' for empty cells

    Returns:
        9x9 grid as list of lists
    """
    if not validate_puzzle(puzzle):
        raise ValueError(f"Expected 81 characters of 0-9, got {puzzle!r}")

    return [
        [int(ch) for ch in puzzle[row * GRID_SIZE:(row + 1) * GRID_SIZE]]
        for row in range(GRID_SIZE)
    ]


def count_givens(puzzle: str) -> int:
    """Number of resolved (non-zero) digits."""
    return sum(1 for ch in puzzle if ch != "0")


def has_enough_givens(puzzle: str, minimum: int = MIN_GIVENS) -> bool:
    """
    True if the puzzle has at least ``minimum`` givens.

    17 is the smallest clue count of any uniquely solvable Sudoku, so fewer
    resolved digits usually means a bad scan.
    """
    return count_givens(puzzle) >= minimum


def format_grid(puzzle: str) -> str:
    """Render a puzzle string as a boxed 9x9 text grid."""
    grid = to_grid(puzzle)
    separator = "+-------+-------+-------+"
    lines = [separator]

    for i, row in enumerate(grid):
        line = "|"
        for j, cell in enumerate(row):
            line += f" {cell if cell else '.'}"
            if j in (2, 5, 8):
                line += " |"
        lines.append(line)

        if i in (2, 5, 8):
            lines.append(separator)

    return "\n".join(lines)


def print_grid(puzzle: str) -> None:
    """Pretty-print a puzzle string to stdout."""
    print(format_grid(puzzle))
