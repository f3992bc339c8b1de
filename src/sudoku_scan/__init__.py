"""
Sudoku Scan - Extract a Sudoku puzzle string from a photo or screenshot.

This package provides functionality for:
- Pixel preprocessing (grayscale, blur, contrast, binarization)
- Board localisation from Sobel edges and grid-line scoring
- Cell extraction and per-cell digit recognition with Tesseract
- A cancellable, progress-reporting scan pipeline
"""

__version__ = "0.1.0"

from .config import ScanConfig, DetectionConfig, load_config, config_from_dict, config_to_dict
from .preprocess import to_grayscale, gaussian_blur_3x3, enhance_contrast, binarize, stretch_contrast
from .edges import detect_edges
from .grid import detect_board, find_board_rectangle, square_rectangle, create_rect_overlay, BoundingRectangle, GridNotFoundError
from .cells import extract_cells, is_cell_empty
from .ocr import TesseractRecognizer, Recognition, parse_digit, to_grid, print_grid, validate_puzzle, has_enough_givens, check_tesseract_installation
from .pipeline import scan, iter_scan, CancelToken, ScanProgress, ScanResult, CellResult, ScanStatus, ScanCancelledError

__all__ = [
    # Configuration
    "ScanConfig",
    "DetectionConfig",
    "load_config",
    "config_from_dict",
    "config_to_dict",
    # Preprocessing
    "to_grayscale",
    "gaussian_blur_3x3",
    "enhance_contrast",
    "binarize",
    "stretch_contrast",
    "detect_edges",
    # Board detection
    "detect_board",
    "find_board_rectangle",
    "square_rectangle",
    "create_rect_overlay",
    "BoundingRectangle",
    # Cells and OCR
    "extract_cells",
    "is_cell_empty",
    "TesseractRecognizer",
    "Recognition",
    "parse_digit",
    "to_grid",
    "print_grid",
    "validate_puzzle",
    "has_enough_givens",
    "check_tesseract_installation",
    # Pipeline
    "scan",
    "iter_scan",
    "CancelToken",
    "ScanProgress",
    "ScanResult",
    "CellResult",
    "ScanStatus",
    # Exceptions
    "GridNotFoundError",
    "ScanCancelledError",
]
