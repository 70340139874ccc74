import pytest

from config import (
    DEFAULT_CONFIG_PATH,
    AnalysisConfig,
    DetectionConfig,
    KinematicsConfig,
    TrackerConfig,
    load_config,
)


def test_defaults():
    config = AnalysisConfig()
    assert config.detection.input_resolution == 640
    assert config.detection.confidence_threshold == 0.5
    assert config.detection.nms_threshold == 0.4
    assert config.tracker.max_trackers == 50
    assert config.tracker.max_match_distance == 100.0
    assert config.tracker.max_trajectory_length == 30
    assert config.tracker.max_frames_since_update == 10
    assert config.kinematics.frame_rate == 30.0
    assert config.kinematics.pixel_to_micron_ratio == 0.5


def test_shipped_yaml_matches_defaults():
    assert load_config([DEFAULT_CONFIG_PATH]) == AnalysisConfig()


def test_no_files_gives_defaults():
    assert load_config([]) == AnalysisConfig()


def test_override_files_merge(tmp_path):
    base = tmp_path / "base.yaml"
    base.write_text("tracker:\n  max_trackers: 20\n  max_match_distance: 40\n"
                    "kinematics:\n  frame_rate: 49\n")
    override = tmp_path / "override.yaml"
    override.write_text("tracker:\n  max_trackers: 5\n")

    config = load_config([base, override])
    assert config.tracker.max_trackers == 5
    assert config.tracker.max_match_distance == 40
    assert config.kinematics.frame_rate == 49
    assert config.detection == DetectionConfig()


def test_empty_yaml_file(tmp_path):
    empty = tmp_path / "empty.yaml"
    empty.write_text("")
    assert load_config([empty]) == AnalysisConfig()


def test_unknown_keys_are_rejected(tmp_path):
    bad_section = tmp_path / "bad_section.yaml"
    bad_section.write_text("camera:\n  fps: 30\n")
    with pytest.raises(ValueError):
        load_config([bad_section])

    bad_key = tmp_path / "bad_key.yaml"
    bad_key.write_text("tracker:\n  max_tracks: 30\n")
    with pytest.raises(ValueError):
        load_config([bad_key])


def test_non_mapping_yaml_is_rejected(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- 1\n- 2\n")
    with pytest.raises(ValueError):
        load_config([path])


@pytest.mark.parametrize("factory, kwargs", [
    (DetectionConfig, {"input_resolution": 0}),
    (DetectionConfig, {"confidence_threshold": 1.5}),
    (DetectionConfig, {"nms_threshold": -0.1}),
    (TrackerConfig, {"max_trackers": 0}),
    (TrackerConfig, {"max_match_distance": 0}),
    (TrackerConfig, {"max_trajectory_length": 0}),
    (TrackerConfig, {"max_frames_since_update": -1}),
    (TrackerConfig, {"velocity_window": 1}),
    (KinematicsConfig, {"frame_rate": 0}),
    (KinematicsConfig, {"pixel_to_micron_ratio": -1}),
    (KinematicsConfig, {"min_track_length": 1}),
    (KinematicsConfig, {"smoothing_window": 4}),
])
def test_invalid_values_raise(factory, kwargs):
    with pytest.raises(ValueError):
        factory(**kwargs)
