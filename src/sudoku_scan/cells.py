"""
Cell extraction functions for splitting the board into individual cells.

This module handles:
- Splitting the board into a uniform 9x9 grid
- Removing an inward margin so grid lines do not bleed into the crop
- Scaling and padding cells for digit recognition
- Detecting empty cells before recognition
"""

import cv2
import numpy as np

from .preprocess import luminance

GRID_SIZE = 9
CELL_COUNT = GRID_SIZE * GRID_SIZE


def cell_source_rect(index: int, board_w: int, board_h: int,
                     margin_fraction: float) -> tuple[float, float, float, float]:
    """
    Fractional source rectangle (x, y, w, h) for a cell, margin removed.

    Args:
        index: Cell index 0..80 (row * 9 + col)
        board_w: Board width in pixels
        board_h: Board height in pixels
        margin_fraction: Fraction of the cell size removed from each side

    Returns:
        Tuple (x, y, width, height) in board pixels
    """
    if not 0 <= index < CELL_COUNT:
        raise ValueError(f"Cell index must be within 0..80, got {index}")

    row, col = divmod(index, GRID_SIZE)
    cell_w = board_w / GRID_SIZE
    cell_h = board_h / GRID_SIZE
    margin_x = cell_w * margin_fraction
    margin_y = cell_h * margin_fraction

    return (
        col * cell_w + margin_x,
        row * cell_h + margin_y,
        cell_w - 2 * margin_x,
        cell_h - 2 * margin_y,
    )


def add_padding(cell: np.ndarray, padding: int, value: int = 255) -> np.ndarray:
    """
    Add a uniform border around a cell image.

    Args:
        cell: Grayscale or colour cell image
        padding: Border width in pixels
        value: Fill value (white by default)

    Returns:
        New image with the border added
    """
    if padding <= 0:
        return cell.copy()

    h, w = cell.shape[:2]
    padded = np.full((h + 2 * padding, w + 2 * padding) + cell.shape[2:], value, dtype=cell.dtype)
    if cell.ndim == 3 and cell.shape[2] == 4:
        padded[..., 3] = 255
    padded[padding:padding + h, padding:padding + w] = cell
    return padded


def extract_cells(board: np.ndarray, margin_fraction: float = 0.154,
                  target_size: int = 100, padding: int = 0) -> list[np.ndarray]:
    """
    Split a board image into 81 cell crops.

    Each crop is shrunk inward by ``margin_fraction`` on every side, scaled
    so its shorter side reaches ``target_size`` (never scaled down), and
    optionally given a white border.

    Args:
        board: Board image (grayscale, RGB or RGBA); square after detection
        margin_fraction: Fraction of the cell size removed from each side
        target_size: Minimum length of the shorter side after scaling
        padding: White border added after scaling

    Returns:
        List of 81 independent cell images in row-major order

    Raises:
        ValueError: If the board is empty, too small or the margin is invalid
    """
    if board is None or board.size == 0:
        raise ValueError("Input board image is empty or invalid")

    if not 0 <= margin_fraction < 0.5:
        raise ValueError(f"margin_fraction must be within [0, 0.5), got {margin_fraction}")

    board_h, board_w = board.shape[:2]
    if board_h < GRID_SIZE or board_w < GRID_SIZE:
        raise ValueError(
            f"Board too small for 9x9 grid, minimum size is 9x9, got {board_h}x{board_w}"
        )

    cells = []
    for index in range(CELL_COUNT):
        x, y, w, h = cell_source_rect(index, board_w, board_h, margin_fraction)

        # Integer crop bounds, at least one pixel each way
        x1 = min(int(round(x)), board_w - 1)
        y1 = min(int(round(y)), board_h - 1)
        x2 = max(min(int(round(x + w)), board_w), x1 + 1)
        y2 = max(min(int(round(y + h)), board_h), y1 + 1)
        crop = board[y1:y2, x1:x2]

        scale = max(1.0, target_size / max(min(w, h), 1e-6))
        out_w = max(1, int(round(w * scale)))
        out_h = max(1, int(round(h * scale)))

        if (out_w, out_h) == (crop.shape[1], crop.shape[0]):
            cell = crop.copy()
        else:
            interpolation = cv2.INTER_CUBIC if scale > 1 else cv2.INTER_AREA
            cell = cv2.resize(crop, (out_w, out_h), interpolation=interpolation)

        if padding > 0:
            cell = add_padding(cell, padding)

        cells.append(cell)

    return cells


def cell_std_dev(cell: np.ndarray) -> float:
    """Population standard deviation of the cell's luminance."""
    return float(np.std(luminance(cell)))


def is_cell_empty(cell: np.ndarray, std_threshold: float = 8.0) -> bool:
    """
    Check if a cell is empty (visually uniform).

    Thin glyphs such as 1 and 7 have a low spread, so the threshold stays
    small.

    Args:
        cell: Cell image
        std_threshold: Cells with a luminance std below this are empty

    Returns:
        True if the cell appears to be empty
    """
    return cell_std_dev(cell) < std_threshold
