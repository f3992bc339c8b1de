"""
Tunable parameters for the Sudoku scan pipeline.

All thresholds were derived empirically against a small set of printed and
photographed boards. They are kept as named defaults so they can be swept
(see ``sudoku_scan.evaluate``) or overridden from a JSON file.
"""

import dataclasses
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# (minimum aspect ratio, multiplier), checked from the most square tier down
DEFAULT_SQUARE_BONUS_TIERS: tuple[tuple[float, float], ...] = (
    (0.9, 2.5),
    (0.85, 2.25),
    (0.8, 2.0),
    (0.7, 1.5),
)


@dataclass(frozen=True)
class DetectionConfig:
    """Parameters for edge detection, line finding and rectangle scoring."""

    edge_threshold_ratio: float = 0.2
    min_run_ratio: float = 0.5
    group_margin_ratio: float = 0.03
    min_span_ratio: float = 0.3
    border_margin_ratio: float = 0.02
    square_bonus_tiers: tuple[tuple[float, float], ...] = DEFAULT_SQUARE_BONUS_TIERS
    top_bottom_penalty: float = 0.7
    left_right_penalty: float = 0.8
    density_threshold: float = 0.2
    density_skip_ratio: float = 0.05
    density_min_span_ratio: float = 0.2
    dark_threshold: int = 200
    min_dark_fraction: float = 0.1

    def __post_init__(self):
        tiers = tuple((float(a), float(b)) for a, b in self.square_bonus_tiers)
        object.__setattr__(self, "square_bonus_tiers", tiers)

        for name in ("edge_threshold_ratio", "min_run_ratio", "min_span_ratio",
                     "density_threshold", "density_min_span_ratio", "min_dark_fraction"):
            value = getattr(self, name)
            if not 0 <= value <= 1:
                raise ValueError(f"{name} must be within [0, 1], got {value}")

        for name in ("group_margin_ratio", "border_margin_ratio", "density_skip_ratio"):
            value = getattr(self, name)
            if not 0 <= value < 0.5:
                raise ValueError(f"{name} must be within [0, 0.5), got {value}")

        # Bonus must never decrease as the rectangle gets more square
        ordered = sorted(tiers)
        for (_, low_bonus), (_, high_bonus) in zip(ordered, ordered[1:]):
            if high_bonus < low_bonus:
                raise ValueError("square_bonus_tiers must be monotonic in aspect ratio")
        if any(bonus < 1.0 for _, bonus in tiers):
            raise ValueError("square_bonus_tiers multipliers must be >= 1.0")


@dataclass(frozen=True)
class ScanConfig:
    """
    Configuration for a single scan.

    The first four fields are the ones exposed to callers of the scan screen;
    the rest are recognition tunables.
    """

    cell_margin: float = 0.154
    min_confidence: float = 1.0
    preprocess: bool = True
    skip_board_detection: bool = False
    target_size: int = 100
    cell_padding: int = 20
    empty_std_threshold: float = 8.0
    enhance_cells: bool = True
    contrast_factor: float = 1.5
    binarize_threshold: int = 160
    max_workers: int | None = None
    recognition_timeout: float = 10.0
    detection: DetectionConfig = field(default_factory=DetectionConfig)

    def __post_init__(self):
        if not 0 <= self.cell_margin < 0.5:
            raise ValueError(f"cell_margin must be within [0, 0.5), got {self.cell_margin}")
        if not 0 <= self.min_confidence <= 100:
            raise ValueError(f"min_confidence must be within [0, 100], got {self.min_confidence}")
        if self.target_size < 1:
            raise ValueError(f"target_size must be positive, got {self.target_size}")
        if self.cell_padding < 0:
            raise ValueError(f"cell_padding must be >= 0, got {self.cell_padding}")
        if self.empty_std_threshold < 0:
            raise ValueError(f"empty_std_threshold must be >= 0, got {self.empty_std_threshold}")
        if self.contrast_factor <= 0:
            raise ValueError(f"contrast_factor must be positive, got {self.contrast_factor}")
        if not 0 <= self.binarize_threshold <= 256:
            raise ValueError(f"binarize_threshold must be within [0, 256], got {self.binarize_threshold}")
        if self.max_workers is not None and self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")
        if self.recognition_timeout <= 0:
            raise ValueError(f"recognition_timeout must be positive, got {self.recognition_timeout}")
        if isinstance(self.detection, dict):
            object.__setattr__(self, "detection", DetectionConfig(**self.detection))

    def replace(self, **changes: Any) -> "ScanConfig":
        """Return a copy with the given fields changed."""
        return dataclasses.replace(self, **changes)


def _check_keys(cls, data: dict[str, Any], where: str) -> None:
    known = {f.name for f in dataclasses.fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown {where} option(s): {', '.join(unknown)}")


def config_from_dict(data: dict[str, Any]) -> ScanConfig:
    """Build a ScanConfig from a plain dict, merging over the defaults."""
    data = dict(data)
    _check_keys(ScanConfig, data, "scan")

    detection = data.pop("detection", None) or {}
    if not isinstance(detection, dict):
        raise ValueError("'detection' must be an object")
    _check_keys(DetectionConfig, detection, "detection")

    return ScanConfig(detection=DetectionConfig(**detection), **data)


def config_to_dict(config: ScanConfig) -> dict[str, Any]:
    """Plain-dict view of a config, suitable for json.dump."""
    data = dataclasses.asdict(config)
    data["detection"]["square_bonus_tiers"] = [list(t) for t in config.detection.square_bonus_tiers]
    return data


def load_config(path: str | Path) -> ScanConfig:
    """
    Load a ScanConfig from a JSON file.

    Args:
        path: Path to a JSON object with ScanConfig keys and an optional
            nested ``detection`` object

    Returns:
        ScanConfig with the file's values merged over the defaults

    Raises:
        ValueError: If the file is not a JSON object or has unknown keys
    """
    path = Path(path)
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a JSON object")

    config = config_from_dict(data)
    logger.debug(f"Config loaded from {path}: {config}")
    return config
