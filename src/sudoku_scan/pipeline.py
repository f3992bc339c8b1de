"""
Scan pipeline: image in, 81-character puzzle string out.

The pipeline is exposed as a generator of ScanProgress events so the caller
pulls progress at its own pace and can abandon a scan by simply closing the
stream. A CancelToken can also be set from another thread; it is checked
between stages and before every cell is collected.
"""

import concurrent.futures
import logging
import os
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterator

import numpy as np

from .cells import CELL_COUNT, GRID_SIZE, extract_cells, is_cell_empty
from .config import ScanConfig
from .grid import BoundingRectangle, GridNotFoundError, detect_board
from .ocr import Recognizer, TesseractRecognizer, prepare_cell, resolve_digit
from .preprocess import stretch_contrast

logger = logging.getLogger(__name__)


class ScanStatus(str, Enum):
    DETECTING = "detecting"
    CROPPING = "cropping"
    RECOGNIZING = "recognizing"
    COMPLETE = "complete"
    ERROR = "error"


class ScanCancelledError(Exception):
    """Raised when a scan is cancelled before it produced a result."""
    pass


class CancelToken:
    """Thread-safe cancellation flag shared between the caller and a scan."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ScanCancelledError("Scan was cancelled")


@dataclass(frozen=True)
class CellResult:
    """Outcome for one cell; digit is None when nothing was resolved."""
    index: int
    digit: int | None
    confidence: float
    is_empty: bool
    text: str = ""

    @property
    def row(self) -> int:
        return self.index // GRID_SIZE

    @property
    def column(self) -> int:
        return self.index % GRID_SIZE


@dataclass(frozen=True)
class ScanResult:
    """Final scan output."""
    puzzle: str
    confidence: float
    cells: tuple[CellResult, ...]
    rect: BoundingRectangle | None = None
    method: str | None = None


@dataclass(frozen=True)
class ScanProgress:
    """One progress event; ``result`` is set on complete, ``error`` on error."""
    status: ScanStatus
    message: str
    progress: float
    result: ScanResult | None = None
    error: Exception | None = None


def recognize_cell(index: int, cell: np.ndarray, recognizer: Recognizer,
                   config: ScanConfig) -> CellResult:
    """
    Prepare and recognize one non-empty cell.

    Preparation and engine failures (including engine timeouts) are logged
    and resolve to an unresolved cell; they never propagate to the rest of
    the scan.
    """
    try:
        prepared = prepare_cell(cell, config)
        recognition = recognizer.recognize(prepared)
    except Exception as e:
        logger.warning(f"Recognition failed for cell {index}: {e}")
        return failed_cell(index)

    digit = resolve_digit(recognition, config.min_confidence)
    logger.debug(
        f"Cell {index}: text={recognition.text!r} confidence={recognition.confidence:.1f} digit={digit}"
    )
    return CellResult(
        index=index,
        digit=digit,
        confidence=float(recognition.confidence),
        is_empty=False,
        text=recognition.text,
    )


def failed_cell(index: int) -> CellResult:
    return CellResult(index=index, digit=None, confidence=0.0, is_empty=False)


def assemble_result(cells: list[CellResult], rect: BoundingRectangle | None = None,
                    method: str | None = None) -> ScanResult:
    """Build the puzzle string and mean confidence of the resolved cells."""
    ordered = sorted(cells, key=lambda c: c.index)
    if [c.index for c in ordered] != list(range(CELL_COUNT)):
        raise ValueError("Expected exactly one result per cell index 0..80")

    puzzle = "".join(str(c.digit) if c.digit is not None else "0" for c in ordered)
    resolved = [c.confidence for c in ordered if c.digit is not None]
    confidence = sum(resolved) / len(resolved) if resolved else 0.0
    return ScanResult(puzzle=puzzle, confidence=confidence, cells=tuple(ordered),
                      rect=rect, method=method)


def iter_scan(image: np.ndarray, config: ScanConfig | None = None,
              recognizer: Recognizer | None = None,
              cancel: CancelToken | None = None) -> Iterator[ScanProgress]:
    """
    Run a scan and yield progress events.

    States go detecting -> cropping -> recognizing -> complete; a detection
    failure yields a single error event and ends the stream.

    Each cell's result is awaited for at most ``config.recognition_timeout``
    seconds; a cell that takes longer resolves to '0'. The default Tesseract
    recognizer is given the same timeout so the engine process is killed
    rather than left running.

    Args:
        image: Input RGB(A) or grayscale image
        config: Scan configuration
        recognizer: Digit recognizer (Tesseract by default)
        cancel: Token checked between stages and cells

    Yields:
        ScanProgress events; the last one carries the ScanResult

    Raises:
        ScanCancelledError: If ``cancel`` is set before the scan completes
    """
    if config is None:
        config = ScanConfig()
    if recognizer is None:
        recognizer = TesseractRecognizer(timeout=config.recognition_timeout)
    if cancel is None:
        cancel = CancelToken()

    cancel.raise_if_cancelled()
    rect = None
    method = None

    try:
        if image is None or image.size == 0:
            raise GridNotFoundError("Input image is empty or invalid")

        if config.skip_board_detection:
            board = image
            method = "skipped"
        else:
            yield ScanProgress(ScanStatus.DETECTING, "Detecting board...", 0.0)
            artifacts = detect_board(image, config.detection)
            board = artifacts["board"]
            rect = artifacts["rect"]
            method = artifacts["method"]

        cancel.raise_if_cancelled()
        yield ScanProgress(ScanStatus.CROPPING, "Extracting cells...", 0.0)

        if config.preprocess:
            board = stretch_contrast(board)
        try:
            cells = extract_cells(board, config.cell_margin, config.target_size)
        except ValueError as e:
            raise GridNotFoundError(f"Cannot split board into cells: {e}") from e
    except GridNotFoundError as e:
        logger.error(f"Board detection failed: {e}")
        yield ScanProgress(ScanStatus.ERROR, str(e), 0.0, error=e)
        return

    cancel.raise_if_cancelled()

    results: list[CellResult | None] = [None] * CELL_COUNT
    pending: dict[int, concurrent.futures.Future] = {}
    timed_out = False
    executor = concurrent.futures.ThreadPoolExecutor(max_workers=config.max_workers or os.cpu_count() or 1)
    try:
        for index, cell in enumerate(cells):
            if is_cell_empty(cell, config.empty_std_threshold):
                results[index] = CellResult(index=index, digit=None, confidence=100.0, is_empty=True)
            else:
                pending[index] = executor.submit(recognize_cell, index, cell, recognizer, config)

        logger.debug(f"{len(pending)} of {CELL_COUNT} cells need recognition")

        # Collect by index so progress and assembly never depend on completion order
        for index in range(CELL_COUNT):
            cancel.raise_if_cancelled()
            if results[index] is None:
                future = pending.pop(index)
                try:
                    results[index] = future.result(timeout=config.recognition_timeout)
                except concurrent.futures.TimeoutError:
                    logger.warning(
                        f"Recognition of cell {index} timed out after {config.recognition_timeout}s"
                    )
                    future.cancel()
                    timed_out = True
                    results[index] = failed_cell(index)
            yield ScanProgress(
                ScanStatus.RECOGNIZING,
                f"Recognizing cell {index + 1}/{CELL_COUNT}...",
                (index + 1) / CELL_COUNT * 100,
            )
    finally:
        # A stuck recognizer call must not hold the scan open
        executor.shutdown(wait=not timed_out, cancel_futures=True)

    cancel.raise_if_cancelled()
    result = assemble_result(results, rect=rect, method=method)
    logger.info(
        f"Scan complete: {sum(1 for c in result.cells if c.digit is not None)} digits, "
        f"confidence {result.confidence:.1f}"
    )
    yield ScanProgress(ScanStatus.COMPLETE, "Complete", 100.0, result=result)


def scan(image: np.ndarray, config: ScanConfig | None = None,
         recognizer: Recognizer | None = None,
         on_progress: Callable[[ScanProgress], None] | None = None,
         cancel: CancelToken | None = None) -> ScanResult:
    """
    Run a scan to completion.

    Args:
        image: Input RGB(A) or grayscale image
        config: Scan configuration
        recognizer: Digit recognizer (Tesseract by default)
        on_progress: Called with every progress event
        cancel: Cancellation token

    Returns:
        ScanResult with the puzzle string and aggregate confidence

    Raises:
        GridNotFoundError: If no usable board could be found
        ScanCancelledError: If the scan was cancelled
    """
    for event in iter_scan(image, config=config, recognizer=recognizer, cancel=cancel):
        if on_progress is not None:
            on_progress(event)
        if event.status is ScanStatus.ERROR:
            raise event.error
        if event.status is ScanStatus.COMPLETE:
            return event.result

    raise ScanCancelledError("Scan ended without a result")
