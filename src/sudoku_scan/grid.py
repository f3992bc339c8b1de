"""
Board localisation: line finding, rectangle scoring and square cropping.

This module handles:
- Finding long horizontal/vertical edge runs and grouping them into grid lines
- Choosing the most board-like rectangle among all line combinations
- Density and dark-pixel fallbacks when too few lines are visible
- Trimming the chosen rectangle to a square and cropping the board
"""

import logging
from dataclasses import dataclass
from itertools import combinations
from math import ceil, floor
from typing import Sequence

import cv2
import numpy as np

from .config import DetectionConfig
from .edges import detect_edges
from .preprocess import gaussian_blur_3x3, to_grayscale

logger = logging.getLogger(__name__)

MIN_BOARD_SIZE = 9


class GridNotFoundError(Exception):
    """Raised when no usable Sudoku board region can be derived from the image."""
    pass


@dataclass(frozen=True)
class LineCandidate:
    """A row (horizontal) or column (vertical) holding a long edge run."""
    position: int
    strength: float  # longest run / image extent, 0..1


@dataclass(frozen=True)
class BoundingRectangle:
    """Board boundary in pixel coordinates; width is right - left."""
    left: int
    top: int
    right: int
    bottom: int

    def __post_init__(self):
        if self.right <= self.left or self.bottom <= self.top:
            raise ValueError(
                f"Invalid rectangle: left={self.left}, top={self.top}, "
                f"right={self.right}, bottom={self.bottom}"
            )

    @property
    def width(self) -> int:
        return self.right - self.left

    @property
    def height(self) -> int:
        return self.bottom - self.top

    @property
    def area(self) -> int:
        return self.width * self.height

    @property
    def aspect_ratio(self) -> float:
        return min(self.width, self.height) / max(self.width, self.height)

    def intersection_area(self, other: "BoundingRectangle") -> int:
        w = min(self.right, other.right) - max(self.left, other.left)
        h = min(self.bottom, other.bottom) - max(self.top, other.top)
        return max(0, w) * max(0, h)

    def as_tuple(self) -> tuple[int, int, int, int]:
        return (self.left, self.top, self.right, self.bottom)


def _longest_runs(mask: np.ndarray) -> np.ndarray:
    """Longest run of non-zero values in every row of a 2-D mask."""
    on = (mask > 0).astype(np.int64)
    rows = on.shape[0]
    current = np.zeros(rows, dtype=np.int64)
    best = np.zeros(rows, dtype=np.int64)
    for x in range(on.shape[1]):
        current = (current + 1) * on[:, x]
        np.maximum(best, current, out=best)
    return best


def longest_run(values: np.ndarray) -> int:
    """Length of the longest contiguous run of non-zero values in a 1-D array."""
    values = np.asarray(values)
    if values.size == 0:
        return 0
    return int(_longest_runs(values.reshape(1, -1))[0])


def find_horizontal_lines(edges: np.ndarray, min_run_ratio: float = 0.5) -> list[LineCandidate]:
    """
    Rows whose longest continuous edge run covers at least ``min_run_ratio`` of the width.

    Args:
        edges: Binary edge map (HxW, 0/255)
        min_run_ratio: Required run length as a fraction of the image width

    Returns:
        Candidates in row order
    """
    h, w = edges.shape
    runs = _longest_runs(edges)
    min_run = w * min_run_ratio
    return [
        LineCandidate(position=y, strength=float(runs[y]) / w)
        for y in range(h)
        if runs[y] >= min_run and runs[y] > 0
    ]


def find_vertical_lines(edges: np.ndarray, min_run_ratio: float = 0.5) -> list[LineCandidate]:
    """Columns whose longest continuous edge run covers at least ``min_run_ratio`` of the height."""
    h, w = edges.shape
    runs = _longest_runs(edges.T)
    min_run = h * min_run_ratio
    return [
        LineCandidate(position=x, strength=float(runs[x]) / h)
        for x in range(w)
        if runs[x] >= min_run and runs[x] > 0
    ]


def group_lines(candidates: Sequence[LineCandidate], margin: float) -> list[LineCandidate]:
    """
    Merge candidates closer than ``margin`` into single grid lines.

    A thick printed line shows up as several adjacent edge rows. Each group is
    represented by its strongest member; on a tie the earlier member stays.

    Args:
        candidates: Raw line candidates
        margin: Maximum position difference (exclusive) within one group

    Returns:
        One candidate per group, sorted by position
    """
    groups: list[LineCandidate] = []
    for line in sorted(candidates, key=lambda c: c.position):
        for i, existing in enumerate(groups):
            if abs(existing.position - line.position) < margin:
                if line.strength > existing.strength:
                    groups[i] = line
                break
        else:
            groups.append(line)

    return sorted(groups, key=lambda c: c.position)


def square_bonus(aspect_ratio: float, tiers: Sequence[tuple[float, float]]) -> float:
    """Multiplier for the first tier whose aspect threshold is exceeded, else 1.0."""
    for threshold, bonus in sorted(tiers, reverse=True):
        if aspect_ratio > threshold:
            return bonus
    return 1.0


def boundary_penalty(rect: BoundingRectangle, width: int, height: int,
                     config: DetectionConfig) -> float:
    """
    Penalty for edges that hug the image border.

    A photo's own frame often forms a large rectangle; the real grid rarely
    sits within a couple of percent of the border.
    """
    border_margin = min(width, height) * config.border_margin_ratio
    penalty = 1.0
    if rect.top < border_margin:
        penalty *= config.top_bottom_penalty
    if rect.bottom > height - border_margin:
        penalty *= config.top_bottom_penalty
    if rect.left < border_margin:
        penalty *= config.left_right_penalty
    if rect.right > width - border_margin:
        penalty *= config.left_right_penalty
    return penalty


def score_rectangle(rect: BoundingRectangle, width: int, height: int,
                    config: DetectionConfig) -> float:
    """area * aspect ratio * square bonus * boundary penalty."""
    aspect = rect.aspect_ratio
    return (
        rect.area
        * aspect
        * square_bonus(aspect, config.square_bonus_tiers)
        * boundary_penalty(rect, width, height, config)
    )


def resolve_rectangle(h_lines: Sequence[LineCandidate], v_lines: Sequence[LineCandidate],
                      width: int, height: int,
                      config: DetectionConfig | None = None) -> BoundingRectangle | None:
    """
    Pick the best-scoring rectangle formed by two horizontal and two vertical lines.

    Args:
        h_lines: Grouped horizontal lines
        v_lines: Grouped vertical lines
        width: Image width
        height: Image height
        config: Detection parameters

    Returns:
        Highest-scoring rectangle, or None if no line pair spans enough of the image
    """
    if config is None:
        config = DetectionConfig()
    h_positions = sorted(line.position for line in h_lines)
    v_positions = sorted(line.position for line in v_lines)

    best_rect = None
    best_score = 0.0

    for top, bottom in combinations(h_positions, 2):
        if bottom - top < height * config.min_span_ratio:
            continue
        for left, right in combinations(v_positions, 2):
            if right - left < width * config.min_span_ratio:
                continue

            rect = BoundingRectangle(left=left, top=top, right=right, bottom=bottom)
            score = score_rectangle(rect, width, height, config)
            if score > best_score:
                best_score = score
                best_rect = rect

    if best_rect is not None:
        logger.debug(f"Best line rectangle {best_rect.as_tuple()} score={best_score:.1f}")
    return best_rect


def density_fallback(edges: np.ndarray,
                     config: DetectionConfig | None = None) -> BoundingRectangle | None:
    """
    Locate the board from row/column edge density when grid lines are not visible.

    Walks inward from each image edge, after skipping a small border margin,
    until the edge density exceeds ``config.density_threshold``. The walk
    stops at the image centre.

    Args:
        edges: Binary edge map (HxW, 0/255)
        config: Detection parameters

    Returns:
        Rectangle, or None if a side has no dense row/column or the region is too small
    """
    if config is None:
        config = DetectionConfig()
    h, w = edges.shape
    on = edges > 0
    row_density = on.sum(axis=1) / w
    col_density = on.sum(axis=0) / h
    threshold = config.density_threshold
    skip = config.density_skip_ratio

    def first_dense(density: np.ndarray, size: int) -> int | None:
        for i in range(floor(size * skip), ceil(size * 0.5)):
            if density[i] > threshold:
                return i
        return None

    def last_dense(density: np.ndarray, size: int) -> int | None:
        start = min(floor(size * (1 - skip)), size - 1)
        for i in range(start, floor(size * 0.5), -1):
            if density[i] > threshold:
                return i
        return None

    top = first_dense(row_density, h)
    bottom = last_dense(row_density, h)
    left = first_dense(col_density, w)
    right = last_dense(col_density, w)

    if None in (top, bottom, left, right):
        return None
    if right - left < w * config.density_min_span_ratio or bottom - top < h * config.density_min_span_ratio:
        return None

    return BoundingRectangle(left=left, top=top, right=right, bottom=bottom)


def dark_pixel_bounds(gray: np.ndarray,
                      config: DetectionConfig | None = None) -> BoundingRectangle:
    """
    Bounding box of rows/columns with a noticeable share of dark pixels.

    Last-resort board estimate. Without any dark content it covers the
    whole image.
    """
    if config is None:
        config = DetectionConfig()
    h, w = gray.shape
    dark = gray < config.dark_threshold
    dark_rows = np.flatnonzero(dark.sum(axis=1) / w > config.min_dark_fraction)
    dark_cols = np.flatnonzero(dark.sum(axis=0) / h > config.min_dark_fraction)

    top, bottom = (int(dark_rows[0]), int(dark_rows[-1]) + 1) if dark_rows.size else (0, h)
    left, right = (int(dark_cols[0]), int(dark_cols[-1]) + 1) if dark_cols.size else (0, w)
    return BoundingRectangle(left=left, top=top, right=right, bottom=bottom)


def find_board_rectangle(edges: np.ndarray, config: DetectionConfig | None = None
                         ) -> tuple[BoundingRectangle | None, str | None]:
    """
    Find the board boundary in an edge map.

    Returns:
        (rectangle, method) where method is "lines" or "density", or (None, None)
    """
    if config is None:
        config = DetectionConfig()
    h, w = edges.shape
    margin = min(w, h) * config.group_margin_ratio

    h_lines = group_lines(find_horizontal_lines(edges, config.min_run_ratio), margin)
    v_lines = group_lines(find_vertical_lines(edges, config.min_run_ratio), margin)
    logger.debug(f"Grouped lines: {len(h_lines)} horizontal, {len(v_lines)} vertical")

    if len(h_lines) >= 2 and len(v_lines) >= 2:
        rect = resolve_rectangle(h_lines, v_lines, w, h, config)
        if rect is not None:
            return rect, "lines"
        logger.debug("No line combination spans enough of the image")
    else:
        logger.debug("Not enough grid lines, trying density fallback")

    rect = density_fallback(edges, config)
    if rect is not None:
        return rect, "density"
    return None, None


def square_rectangle(rect: BoundingRectangle) -> BoundingRectangle:
    """Trim the longer side symmetrically so width == height."""
    size = min(rect.width, rect.height)
    left = rect.left + (rect.width - size) // 2
    top = rect.top + (rect.height - size) // 2
    return BoundingRectangle(left=left, top=top, right=left + size, bottom=top + size)


def crop_to_rectangle(image: np.ndarray, rect: BoundingRectangle) -> np.ndarray:
    """Copy of the image region covered by ``rect``."""
    return image[rect.top:rect.bottom, rect.left:rect.right].copy()


def create_rect_overlay(image: np.ndarray, rect: BoundingRectangle) -> np.ndarray:
    """
    Draw the detected board rectangle with circles at its corners.

    Args:
        image: RGB or grayscale image
        rect: Rectangle to draw

    Returns:
        RGB image with the overlay
    """
    if image.ndim == 2:
        overlay = cv2.cvtColor(image, cv2.COLOR_GRAY2RGB)
    else:
        overlay = np.ascontiguousarray(image[..., :3]).copy()

    cv2.rectangle(overlay, (rect.left, rect.top), (rect.right, rect.bottom), (255, 0, 0), 3)
    for corner in ((rect.left, rect.top), (rect.right, rect.top),
                   (rect.right, rect.bottom), (rect.left, rect.bottom)):
        cv2.circle(overlay, corner, 8, (0, 255, 0), -1)
        cv2.circle(overlay, corner, 8, (0, 0, 0), 2)

    return overlay


def edge_map(image: np.ndarray, config: DetectionConfig | None = None) -> np.ndarray:
    """Binary edge map of an image: grayscale -> 3x3 blur -> Sobel threshold."""
    if config is None:
        config = DetectionConfig()
    return detect_edges(gaussian_blur_3x3(to_grayscale(image)), config.edge_threshold_ratio)


def detect_board(image: np.ndarray, config: DetectionConfig | None = None) -> dict:
    """
    Complete localisation: grayscale -> blur -> edges -> rectangle -> square crop.

    Args:
        image: Input RGB(A) or grayscale image
        config: Detection parameters

    Returns:
        Dictionary with intermediate artifacts: gray, edges, rect (squared),
        method ("lines", "density" or "whole-image") and board

    Raises:
        GridNotFoundError: If the image is empty or the board would be degenerate
    """
    if config is None:
        config = DetectionConfig()

    if image is None or image.size == 0:
        raise GridNotFoundError("Input image is empty or invalid")

    gray = to_grayscale(image)
    edges = edge_map(gray, config)

    rect, method = find_board_rectangle(edges, config)
    if rect is None:
        logger.warning("Rectangle detection failed, using dark-pixel bounds")
        rect = dark_pixel_bounds(gray, config)
        method = "whole-image"

    squared = square_rectangle(rect)
    if squared.width < MIN_BOARD_SIZE:
        raise GridNotFoundError(
            f"Board region is degenerate ({squared.width}x{squared.height}), "
            f"minimum size is {MIN_BOARD_SIZE}x{MIN_BOARD_SIZE}"
        )

    logger.debug(f"Board rectangle {squared.as_tuple()} via {method}")
    return {
        "gray": gray,
        "edges": edges,
        "rect": squared,
        "method": method,
        "board": crop_to_rectangle(image, squared),
    }
