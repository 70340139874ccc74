import cv2
import numpy as np
import pandas as pd
import pytest

import SpermTracker
from SpermTracker import FRAME_COLUMNS, SpermMotilityAnalyzer


class ScriptedDetector:
    """Returns one moving head per call, 10 px further right each frame."""

    def __init__(self, resolution=640):
        self.resolution = resolution
        self.calls = 0

    def __call__(self, frame):
        x = 100 + 10 * self.calls
        self.calls += 1
        r = self.resolution
        return np.array([x / r, 200 / r, 4 / r, 4 / r, 0.9, 0])


def moving_head_frames(count, step=3):
    frames = []
    for i in range(count):
        frame = np.zeros((200, 200, 3), dtype=np.uint8)
        cv2.circle(frame, (40 + step * i, 100), 5, (255, 255, 255), -1)
        frames.append(frame)
    return frames


def fake_video(monkeypatch, frames, fps=30.0):
    monkeypatch.setattr(SpermTracker, "probe_video", lambda path: {
        'fps': fps, 'width': 200, 'height': 200, 'frame_count': len(frames),
    })
    monkeypatch.setattr(SpermTracker, "read_video", lambda path: iter(frames))


def test_process_frame_records_frame_table():
    analyzer = SpermMotilityAnalyzer(detector=ScriptedDetector())
    for _ in range(6):
        snapshots = analyzer.process_frame(None)

    [snapshot] = snapshots
    assert snapshot.id == 1
    assert len(snapshot.trajectory) == 6
    assert snapshot.is_motile

    df = analyzer.results()
    assert list(df.columns) == FRAME_COLUMNS
    assert df['Frame #'].tolist() == [1, 2, 3, 4, 5, 6]
    assert df['Tracked'].tolist() == [1] * 6
    # CASA values only once the track has five points
    assert df['VCL'].tolist()[:4] == [0.0] * 4
    assert df['VCL'].iloc[-1] == pytest.approx(150.0)


def test_summary_uses_last_frame():
    analyzer = SpermMotilityAnalyzer(detector=ScriptedDetector())
    for _ in range(10):
        analyzer.process_frame(None)

    metrics, advanced = analyzer.summary()
    assert metrics.vcl == pytest.approx(150.0)
    assert metrics.lin == pytest.approx(100.0)
    assert metrics.motility == pytest.approx(100.0)
    assert advanced.progressive_motility == pytest.approx(100.0)


def test_results_empty_before_any_frame():
    analyzer = SpermMotilityAnalyzer(detector=ScriptedDetector())
    assert analyzer.results().empty
    metrics, _ = analyzer.summary()
    assert metrics.motility == 0.0


def test_analyze_video_writes_reports(monkeypatch, tmp_path):
    frames = moving_head_frames(8)
    fake_video(monkeypatch, frames)

    analyzer = SpermMotilityAnalyzer()
    df = analyzer.analyze_video("sample.mp4", output_dir=str(tmp_path / "out"))

    assert len(df) == 8
    assert df['Tracked'].tolist() == [1] * 8

    saved = pd.read_csv(tmp_path / "out" / "sperm_motility_analysis.csv")
    assert list(saved.columns) == FRAME_COLUMNS
    assert len(saved) == 8

    tracks = pd.read_csv(tmp_path / "out" / "sperm_track_metrics.csv")
    assert tracks['id'].tolist() == [1]
    assert tracks['points'].tolist() == [8]


def test_analyze_video_resets_between_runs(monkeypatch, tmp_path):
    fake_video(monkeypatch, moving_head_frames(5))
    analyzer = SpermMotilityAnalyzer()
    analyzer.analyze_video("a.mp4", output_dir=str(tmp_path))
    df = analyzer.analyze_video("b.mp4", output_dir=str(tmp_path))

    assert len(df) == 5
    assert [s.id for s in analyzer.last_snapshots] == [1]


def test_cli_prints_summary(monkeypatch, tmp_path, capsys):
    fake_video(monkeypatch, moving_head_frames(8))
    config = tmp_path / "fast.yaml"
    config.write_text("kinematics:\n  frame_rate: 30\n")

    exit_code = SpermTracker.main(["sample.mp4", "-c", str(config), "-o", str(tmp_path / "cli")])

    assert exit_code == 0
    out = capsys.readouterr().out
    assert "Frames processed: 8" in out
    assert "VCL:" in out
    assert "Classification:" in out
    assert (tmp_path / "cli" / "sperm_motility_analysis.csv").exists()
