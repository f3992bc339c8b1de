"""
Sobel edge detection for board localisation.
"""

import numpy as np

SOBEL_X = np.array([[-1, 0, 1], [-2, 0, 2], [-1, 0, 1]], dtype=np.int32)
SOBEL_Y = np.array([[-1, -2, -1], [0, 0, 0], [1, 2, 1]], dtype=np.int32)


def sobel_magnitude(gray: np.ndarray) -> np.ndarray:
    """
    Gradient magnitude sqrt(gx^2 + gy^2) for every interior pixel.

    Args:
        gray: Grayscale uint8 image (HxW)

    Returns:
        float64 HxW array; border pixels are 0
    """
    if gray.ndim != 2:
        raise ValueError("sobel_magnitude expects a 2-D grayscale image")

    h, w = gray.shape
    magnitude = np.zeros((h, w), dtype=np.float64)
    if h < 3 or w < 3:
        return magnitude

    src = gray.astype(np.int32)
    gx = np.zeros((h - 2, w - 2), dtype=np.int32)
    gy = np.zeros((h - 2, w - 2), dtype=np.int32)
    for ky in range(3):
        for kx in range(3):
            window = src[ky:ky + h - 2, kx:kx + w - 2]
            if SOBEL_X[ky, kx]:
                gx += SOBEL_X[ky, kx] * window
            if SOBEL_Y[ky, kx]:
                gy += SOBEL_Y[ky, kx] * window

    magnitude[1:h - 1, 1:w - 1] = np.sqrt(gx.astype(np.float64) ** 2 + gy.astype(np.float64) ** 2)
    return magnitude


def detect_edges(gray: np.ndarray, threshold_ratio: float = 0.2) -> np.ndarray:
    """
    Binary edge map from Sobel magnitudes.

    The threshold is relative to the strongest gradient in the whole image,
    so all magnitudes are computed before any pixel is classified.

    Args:
        gray: Grayscale uint8 image (HxW), normally already blurred
        threshold_ratio: Fraction of the maximum magnitude a pixel must exceed

    Returns:
        uint8 HxW array with 255 for edge pixels and 0 elsewhere
    """
    magnitude = sobel_magnitude(gray)
    threshold = float(magnitude.max()) * threshold_ratio
    return np.where(magnitude > threshold, 255, 0).astype(np.uint8)
