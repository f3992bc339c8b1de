"""
Tests for accuracy measurement and parameter sweeps.
"""

import sys
from pathlib import Path

import cv2
import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from sudoku_scan.config import ScanConfig
from sudoku_scan.evaluate import (
    compare_puzzles,
    evaluate_config,
    load_cases,
    parse_test_data,
    sweep,
    sweep_grid,
)

from synthetic import PUZZLE, DotCountRecognizer, create_board_image


class TestParseTestData:

    def test_parse(self, tmp_path):
        data = tmp_path / "TestData.txt"
        data.write_text(
            "# image | expected\n"
            "\n"
            f"board1.png | {PUZZLE}\n"
            f"board2.jpg|{'0' * 81}\n"
        )

        cases = parse_test_data(data)

        assert cases == [("board1.png", PUZZLE), ("board2.jpg", "0" * 81)]

    def test_missing_separator(self, tmp_path):
        data = tmp_path / "TestData.txt"
        data.write_text(f"board1.png {PUZZLE}\n")
        with pytest.raises(ValueError, match=":1:"):
            parse_test_data(data)

    def test_bad_puzzle(self, tmp_path):
        data = tmp_path / "TestData.txt"
        data.write_text("board1.png | 123\n")
        with pytest.raises(ValueError, match="81 digits"):
            parse_test_data(data)


class TestComparePuzzles:

    def test_perfect_match(self):
        stats = compare_puzzles(PUZZLE, PUZZLE)

        assert stats["correct"] == 30
        assert stats["accuracy"] == 1.0
        assert stats["f1_score"] == 1.0
        assert stats["cells_matching"] == 81
        assert stats["errors"] == []

    def test_error_kinds(self):
        expected = "12" + "0" * 79
        actual = "03" + "0" * 78 + "4"

        stats = compare_puzzles(expected, actual)

        assert stats["correct"] == 0
        assert stats["missed"] == 1
        assert stats["wrong"] == 1
        assert stats["false_positives"] == 1
        assert stats["cells_matching"] == 78
        assert stats["accuracy"] == 0
        assert stats["errors"][0].startswith("MISS r0c0")
        assert stats["errors"][1].startswith("WRONG r0c1")
        assert stats["errors"][2].startswith("FP r8c8")

    def test_precision_and_recall(self):
        expected = "1234" + "0" * 77
        actual = "1200" + "5" + "0" * 76

        stats = compare_puzzles(expected, actual)

        assert stats["precision"] == pytest.approx(2 / 3)
        assert stats["recall"] == pytest.approx(2 / 4)

    def test_invalid_input(self):
        with pytest.raises(ValueError):
            compare_puzzles(PUZZLE, "123")


class TestSweep:

    def test_sweep_grid_size(self):
        configs = sweep_grid()
        assert len(configs) == 18
        assert {c.cell_margin for c in configs} == {0.152, 0.153, 0.154}
        assert {c.cell_padding for c in configs} == {20, 25}

    def test_sweep_grid_keeps_base(self):
        base = ScanConfig(min_confidence=30)
        configs = sweep_grid(base, margins=(0.1,), binarize_thresholds=(150,), paddings=(10,))
        assert configs == [base.replace(cell_margin=0.1, binarize_threshold=150, cell_padding=10)]

    def test_undetectable_board_counts_as_empty(self):
        tiny = np.full((5, 5, 3), 255, dtype=np.uint8)

        outcome = evaluate_config([(tiny, PUZZLE)], ScanConfig(), DotCountRecognizer())

        assert outcome["cases"][0]["actual"] == "0" * 81
        assert outcome["total_matching"] == 51
        assert outcome["total_cells"] == 81

    @pytest.mark.slow
    def test_ranking(self):
        cases = [(create_board_image(), PUZZLE)]
        good = ScanConfig()
        bad = ScanConfig(min_confidence=95)

        ranked = sweep(cases, [bad, good], DotCountRecognizer(confidence=90.0))

        assert ranked[0]["config"] == good
        assert ranked[0]["total_matching"] == 81
        assert ranked[1]["total_matching"] == 51


def test_load_cases(tmp_path):
    image = np.zeros((20, 30, 3), dtype=np.uint8)
    image[..., 2] = 255  # red in BGR
    cv2.imwrite(str(tmp_path / "red.png"), image)
    data = tmp_path / "TestData.txt"
    data.write_text(f"red.png | {PUZZLE}\n")

    cases = load_cases(data, tmp_path)

    assert len(cases) == 1
    loaded, expected = cases[0]
    assert expected == PUZZLE
    assert loaded.shape == (20, 30, 3)
    assert loaded[0, 0].tolist() == [255, 0, 0]


def test_load_cases_missing_image(tmp_path):
    data = tmp_path / "TestData.txt"
    data.write_text(f"missing.png | {PUZZLE}\n")
    with pytest.raises(FileNotFoundError):
        load_cases(data, tmp_path)
