"""
Tests for board localisation using synthetic edge maps and board images.

All tests use small synthetic images built on the fly (NumPy arrays + cv2 drawing)
so tests don't rely on external files.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from sudoku_scan.config import DetectionConfig
from sudoku_scan.grid import (
    BoundingRectangle,
    GridNotFoundError,
    LineCandidate,
    boundary_penalty,
    create_rect_overlay,
    dark_pixel_bounds,
    density_fallback,
    detect_board,
    edge_map,
    find_board_rectangle,
    find_horizontal_lines,
    find_vertical_lines,
    group_lines,
    longest_run,
    resolve_rectangle,
    square_bonus,
    square_rectangle,
)

from synthetic import GRID_END, GRID_ORIGIN, create_board_image


def line_edge_map(size=300, positions=(50, 250)):
    """Edge map with full-length horizontal and vertical lines at ``positions``."""
    edges = np.zeros((size, size), dtype=np.uint8)
    for p in positions:
        edges[p, :] = 255
        edges[:, p] = 255
    return edges


def checkerboard_edge_map(size=300, lo=60, hi=240):
    """Dense edge texture without any long straight runs."""
    edges = np.zeros((size, size), dtype=np.uint8)
    yy, xx = np.mgrid[lo:hi, lo:hi]
    edges[lo:hi, lo:hi] = np.where((yy + xx) % 2 == 0, 255, 0)
    return edges


class TestBoundingRectangle:

    def test_properties(self):
        rect = BoundingRectangle(10, 20, 110, 70)
        assert rect.width == 100
        assert rect.height == 50
        assert rect.area == 5000
        assert rect.aspect_ratio == 0.5
        assert rect.as_tuple() == (10, 20, 110, 70)

    @pytest.mark.parametrize("coords", [(10, 10, 10, 20), (10, 10, 20, 10), (30, 10, 20, 40)])
    def test_degenerate_rectangle_rejected(self, coords):
        with pytest.raises(ValueError):
            BoundingRectangle(*coords)

    def test_intersection_area(self):
        a = BoundingRectangle(0, 0, 10, 10)
        assert a.intersection_area(BoundingRectangle(5, 5, 15, 15)) == 25
        assert a.intersection_area(BoundingRectangle(20, 20, 30, 30)) == 0


class TestLineFinding:
    """Long edge runs and grouping."""

    def test_longest_run(self):
        assert longest_run(np.array([0, 1, 1, 0, 1, 1, 1, 0])) == 3
        assert longest_run(np.array([0, 0, 0])) == 0
        assert longest_run(np.array([])) == 0

    def test_horizontal_and_vertical_lines(self):
        edges = line_edge_map()

        h_lines = find_horizontal_lines(edges, 0.5)
        v_lines = find_vertical_lines(edges, 0.5)

        assert [line.position for line in h_lines] == [50, 250]
        assert [line.position for line in v_lines] == [50, 250]
        assert all(line.strength == 1.0 for line in h_lines)

    def test_short_runs_ignored(self):
        edges = np.zeros((100, 100), dtype=np.uint8)
        edges[30, 10:40] = 255  # 30% of width
        edges[60, 0:60] = 255   # 60% of width

        assert [line.position for line in find_horizontal_lines(edges, 0.5)] == [60]

    def test_empty_edge_map_has_no_lines(self):
        edges = np.zeros((50, 50), dtype=np.uint8)
        assert find_horizontal_lines(edges, 0.0) == []

    def test_group_lines_keeps_strongest(self):
        candidates = [
            LineCandidate(10, 0.6),
            LineCandidate(12, 0.9),
            LineCandidate(14, 0.7),
            LineCandidate(100, 0.5),
        ]

        grouped = group_lines(candidates, margin=9)

        assert grouped == [LineCandidate(12, 0.9), LineCandidate(100, 0.5)]

    def test_group_lines_tie_keeps_first(self):
        grouped = group_lines([LineCandidate(21, 0.8), LineCandidate(20, 0.8)], margin=5)
        assert grouped == [LineCandidate(20, 0.8)]

    def test_group_margin_is_exclusive(self):
        grouped = group_lines([LineCandidate(0, 1.0), LineCandidate(9, 1.0)], margin=9)
        assert len(grouped) == 2


class TestRectangleScoring:

    def test_square_bonus_tiers(self):
        tiers = DetectionConfig().square_bonus_tiers
        assert square_bonus(1.0, tiers) == 2.5
        assert square_bonus(0.88, tiers) == 2.25
        assert square_bonus(0.82, tiers) == 2.0
        assert square_bonus(0.75, tiers) == 1.5
        assert square_bonus(0.5, tiers) == 1.0

    def test_boundary_penalty(self):
        config = DetectionConfig()
        assert boundary_penalty(BoundingRectangle(50, 50, 250, 250), 300, 300, config) == 1.0
        assert boundary_penalty(BoundingRectangle(1, 50, 250, 250), 300, 300, config) == pytest.approx(0.8)
        assert boundary_penalty(BoundingRectangle(50, 1, 250, 250), 300, 300, config) == pytest.approx(0.7)
        full = boundary_penalty(BoundingRectangle(1, 1, 299, 299), 300, 300, config)
        assert full == pytest.approx(0.7 * 0.7 * 0.8 * 0.8)

    def test_resolve_prefers_square(self):
        h_lines = [LineCandidate(p, 1.0) for p in (50, 150, 250)]
        v_lines = [LineCandidate(p, 1.0) for p in (50, 250)]

        rect = resolve_rectangle(h_lines, v_lines, 300, 300)

        assert rect.as_tuple() == (50, 50, 250, 250)

    def test_resolve_returns_none_when_span_too_small(self):
        h_lines = [LineCandidate(p, 1.0) for p in (100, 120)]
        v_lines = [LineCandidate(p, 1.0) for p in (100, 120)]
        assert resolve_rectangle(h_lines, v_lines, 300, 300) is None


class TestBoardRectangle:
    """Both localisation branches exercised independently."""

    def test_line_branch(self):
        rect, method = find_board_rectangle(line_edge_map(), DetectionConfig())

        assert method == "lines"
        assert rect.as_tuple() == (50, 50, 250, 250)

    def test_line_branch_ignores_photo_frame(self):
        edges = line_edge_map(positions=(2, 50, 250, 297))

        rect, method = find_board_rectangle(edges, DetectionConfig())

        assert method == "lines"
        assert rect.as_tuple() == (50, 50, 250, 250)

    def test_density_branch(self):
        rect, method = find_board_rectangle(checkerboard_edge_map(), DetectionConfig())

        assert method == "density"
        assert rect.as_tuple() == (60, 60, 239, 239)

    def test_density_fallback_skips_border(self):
        edges = checkerboard_edge_map()
        edges[0:5, :] = 255  # framing artefact inside the skipped margin

        rect = density_fallback(edges)

        assert rect.top == 60

    def test_no_rectangle_on_blank_edges(self):
        rect, method = find_board_rectangle(np.zeros((100, 100), dtype=np.uint8))
        assert rect is None
        assert method is None

    def test_dark_pixel_bounds(self):
        gray = np.full((100, 100), 255, dtype=np.uint8)
        gray[20:80, 30:70] = 0

        rect = dark_pixel_bounds(gray)

        assert rect.as_tuple() == (30, 20, 70, 80)

    def test_dark_pixel_bounds_defaults_to_whole_image(self):
        gray = np.full((40, 60), 255, dtype=np.uint8)
        assert dark_pixel_bounds(gray).as_tuple() == (0, 0, 60, 40)


class TestSquaring:

    def test_square_rectangle_trims_longer_side(self):
        squared = square_rectangle(BoundingRectangle(10, 20, 210, 260))
        assert squared.as_tuple() == (10, 40, 210, 240)

    @pytest.mark.parametrize("coords", [(0, 0, 101, 100), (3, 7, 50, 98), (0, 0, 9, 10), (5, 5, 6, 400)])
    def test_squared_sides_equal(self, coords):
        squared = square_rectangle(BoundingRectangle(*coords))
        assert squared.width == squared.height


class TestDetectBoard:
    """Complete localisation on synthetic boards."""

    def test_artifacts_present(self):
        artifacts = detect_board(create_board_image())

        assert 'gray' in artifacts
        assert 'edges' in artifacts
        assert 'rect' in artifacts
        assert 'method' in artifacts
        assert 'board' in artifacts
        assert artifacts['method'] == "lines"

        rect = artifacts['rect']
        assert rect.width == rect.height
        assert artifacts['board'].shape[:2] == (rect.height, rect.width)

    def test_edge_map_matches_detection(self):
        image = create_board_image()
        np.testing.assert_array_equal(edge_map(image), detect_board(image)['edges'])

    def test_rectangle_covers_true_grid(self):
        truth = BoundingRectangle(GRID_ORIGIN, GRID_ORIGIN, GRID_END, GRID_END)

        rect = detect_board(create_board_image())['rect']

        assert rect.intersection_area(truth) >= 0.95 * truth.area
        assert rect.area <= 1.1 * truth.area

    def test_blank_images_fall_back_to_whole_image(self):
        for value in (0, 255):
            image = np.full((120, 160, 3), value, dtype=np.uint8)

            artifacts = detect_board(image)

            assert artifacts['method'] == "whole-image"
            assert artifacts['rect'].width == artifacts['rect'].height == 120

    def test_failure_cases(self):
        with pytest.raises(GridNotFoundError):
            detect_board(np.zeros((0, 0, 3), dtype=np.uint8))

        tiny_img = np.ones((5, 5, 3), dtype=np.uint8) * 255
        with pytest.raises(GridNotFoundError):
            detect_board(tiny_img)

    def test_create_rect_overlay(self):
        image = create_board_image()
        rect = BoundingRectangle(40, 40, 580, 580)

        overlay = create_rect_overlay(image, rect)

        assert overlay.shape == image.shape
        assert not np.array_equal(overlay, image)
