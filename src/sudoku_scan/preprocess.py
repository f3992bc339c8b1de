"""
Pixel-level preprocessing for the Sudoku scan pipeline.

This module handles:
- Converting RGB(A) buffers to grayscale with NTSC luma weights
- Fixed 3x3 Gaussian smoothing
- Contrast enhancement, stretching and binarization of boards and cells

Images are NumPy arrays: HxW grayscale, HxWx3 RGB or HxWx4 RGBA, uint8.
Every function returns a new array and leaves its input untouched.
"""

import cv2
import numpy as np

GAUSSIAN_KERNEL_3X3 = np.array([[1, 2, 1], [2, 4, 2], [1, 2, 1]], dtype=np.int32)
GAUSSIAN_KERNEL_SUM = 16


def luminance(image: np.ndarray) -> np.ndarray:
    """
    Compute unfloored luminance 0.299R + 0.587G + 0.114B.

    Args:
        image: HxW, HxWx3 (RGB) or HxWx4 (RGBA) image

    Returns:
        float64 array of shape HxW
    """
    if image is None or image.size == 0:
        raise ValueError("Input image is empty or invalid")

    if image.ndim == 2:
        return image.astype(np.float64)

    if image.ndim != 3 or image.shape[2] not in (3, 4):
        raise ValueError(f"Expected HxW, HxWx3 or HxWx4 image, got shape {image.shape}")

    rgb = image[..., :3].astype(np.float64)
    return 0.299 * rgb[..., 0] + 0.587 * rgb[..., 1] + 0.114 * rgb[..., 2]


def to_grayscale(image: np.ndarray) -> np.ndarray:
    """
    Convert an image to 8-bit grayscale.

    Uses floor(0.299R + 0.587G + 0.114B) so downstream thresholds see the
    same values regardless of platform colour conversion routines.

    Args:
        image: HxW, HxWx3 (RGB) or HxWx4 (RGBA) image

    Returns:
        uint8 array of shape HxW
    """
    if image is not None and image.ndim == 2:
        return image.astype(np.uint8, copy=True)
    return np.floor(luminance(image)).astype(np.uint8)


def gaussian_blur_3x3(gray: np.ndarray) -> np.ndarray:
    """
    Apply the fixed [1,2,1; 2,4,2; 1,2,1] / 16 kernel.

    Border rows and columns are copied through unfiltered (no wrap or
    reflection).

    Args:
        gray: Grayscale uint8 image

    Returns:
        Blurred uint8 image of the same shape
    """
    if gray.ndim != 2:
        raise ValueError("gaussian_blur_3x3 expects a 2-D grayscale image")

    result = gray.copy()
    h, w = gray.shape
    if h < 3 or w < 3:
        return result

    src = gray.astype(np.int32)
    acc = np.zeros((h - 2, w - 2), dtype=np.int32)
    for ky in range(3):
        for kx in range(3):
            acc += GAUSSIAN_KERNEL_3X3[ky, kx] * src[ky:ky + h - 2, kx:kx + w - 2]

    result[1:h - 1, 1:w - 1] = (acc // GAUSSIAN_KERNEL_SUM).astype(np.uint8)
    return result


def enhance_contrast(image: np.ndarray, factor: float = 1.5) -> np.ndarray:
    """
    Push every channel away from the mean luminance by ``factor``.

    Args:
        image: Grayscale, RGB or RGBA image
        factor: Contrast multiplier (1.0 leaves the image unchanged)

    Returns:
        New uint8 image of the same shape; alpha is preserved
    """
    mean = float(np.mean(luminance(image)))
    result = image.copy()

    channels = result if result.ndim == 2 else result[..., :3]
    stretched = mean + (channels.astype(np.float64) - mean) * factor
    # Half-up rounding like canvas pixel writes, not numpy's banker's rounding
    stretched = np.floor(stretched + 0.5)
    np.clip(stretched, 0, 255, out=stretched)

    if result.ndim == 2:
        result[...] = stretched.astype(np.uint8)
    else:
        result[..., :3] = stretched.astype(np.uint8)
    return result


def binarize(image: np.ndarray, threshold: int = 160) -> np.ndarray:
    """
    Black/white threshold on luminance.

    Args:
        image: Grayscale, RGB or RGBA image
        threshold: Pixels with luminance below this become 0, others 255

    Returns:
        uint8 HxW array of 0/255
    """
    lum = luminance(image)
    return np.where(lum < threshold, 0, 255).astype(np.uint8)


def stretch_contrast(image: np.ndarray, gamma: float = 0.8) -> np.ndarray:
    """
    Stretch the luminance range to 0..255 and apply gamma correction.

    Used on the cropped board before cell extraction so faint print gets
    darker and paper gets whiter.

    Args:
        image: Grayscale, RGB or RGBA board image
        gamma: Gamma exponent applied after the linear stretch

    Returns:
        uint8 HxW grayscale board
    """
    gray = to_grayscale(image).astype(np.float64)
    lo = gray.min()
    hi = gray.max()
    value_range = (hi - lo) or 1.0

    stretched = np.floor((gray - lo) / value_range * 255)
    corrected = np.floor(255 * np.power(stretched / 255, gamma))
    return np.clip(corrected, 0, 255).astype(np.uint8)


def rgb_from_bgr(image_bgr: np.ndarray) -> np.ndarray:
    """Convert an OpenCV BGR or BGRA image to RGB(A); grayscale passes through."""
    if image_bgr.ndim == 2:
        return image_bgr.copy()
    if image_bgr.shape[2] == 4:
        return cv2.cvtColor(image_bgr, cv2.COLOR_BGRA2RGBA)
    return cv2.cvtColor(image_bgr, cv2.COLOR_BGR2RGB)
