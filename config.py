# analysis settings in one place

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Union

import yaml

PROJECT_ROOT = Path(__file__).resolve().parent
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "configs" / "default.yaml"


@dataclass
class DetectionConfig:
    input_resolution: int = 640       # detector input size, raw values are normalized to it
    confidence_threshold: float = 0.5
    nms_threshold: float = 0.4

    def __post_init__(self):
        if self.input_resolution <= 0:
            raise ValueError("input_resolution must be positive")
        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise ValueError("confidence_threshold must be within [0, 1]")
        if not 0.0 <= self.nms_threshold <= 1.0:
            raise ValueError("nms_threshold must be within [0, 1]")


@dataclass
class TrackerConfig:
    max_trackers: int = 50
    max_match_distance: float = 100.0   # pixels
    max_trajectory_length: int = 30     # points kept per track
    max_frames_since_update: int = 10   # missed frames before a track is dropped
    velocity_window: int = 5            # points used for the speed estimate
    motile_speed_px: float = 2.0        # pixels per frame

    def __post_init__(self):
        if self.max_trackers <= 0:
            raise ValueError("max_trackers must be positive")
        if self.max_match_distance <= 0:
            raise ValueError("max_match_distance must be positive")
        if self.max_trajectory_length <= 0:
            raise ValueError("max_trajectory_length must be positive")
        if self.max_frames_since_update < 0:
            raise ValueError("max_frames_since_update must not be negative")
        if self.velocity_window < 2:
            raise ValueError("velocity_window must be at least 2")


@dataclass
class KinematicsConfig:
    frame_rate: float = 30.0
    pixel_to_micron_ratio: float = 0.5  # adjust to the microscope calibration
    min_track_length: int = 5
    min_beat_track_length: int = 10
    motile_vcl: float = 10.0            # um/s
    progressive_vsl: float = 25.0       # um/s
    smoothing_window: int = 3

    def __post_init__(self):
        if self.frame_rate <= 0:
            raise ValueError("frame_rate must be positive")
        if self.pixel_to_micron_ratio <= 0:
            raise ValueError("pixel_to_micron_ratio must be positive")
        if self.min_track_length < 2:
            raise ValueError("min_track_length must be at least 2")
        if self.smoothing_window < 1 or self.smoothing_window % 2 == 0:
            raise ValueError("smoothing_window must be a positive odd number")


@dataclass
class AnalysisConfig:
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    kinematics: KinematicsConfig = field(default_factory=KinematicsConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisConfig":
        unknown = set(data) - set(_SECTIONS)
        if unknown:
            raise ValueError(f"Unknown config sections: {sorted(unknown)}")

        kwargs = {
            name: _build_section(_SECTIONS[name], value or {})
            for name, value in data.items()
        }
        return cls(**kwargs)


_SECTIONS = {
    "detection": DetectionConfig,
    "tracker": TrackerConfig,
    "kinematics": KinematicsConfig,
}


def _build_section(section_cls, values: Dict[str, Any]):
    known = {f.name for f in fields(section_cls)}
    unknown = set(values) - known
    if unknown:
        raise ValueError(f"Unknown {section_cls.__name__} keys: {sorted(unknown)}")
    return section_cls(**values)


def _load_yaml(path: Union[str, Path]) -> Dict[str, Any]:
    with open(path, "r") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    return data


def _merge_configs(base: Dict[str, Any], override: Dict[str, Any]):
    """Recursively merge override into base."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _merge_configs(base[key], value)
        else:
            base[key] = value


def load_config(config_paths: List[Union[str, Path]]) -> AnalysisConfig:
    """Load and merge YAML config files, later files overriding earlier ones.

    With no paths the built-in defaults are returned.
    """
    merged: Dict[str, Any] = {}
    for path in config_paths:
        _merge_configs(merged, _load_yaml(path))
    return AnalysisConfig.from_dict(merged)
