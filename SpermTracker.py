import argparse
import logging
import math
import os
from collections import OrderedDict, deque
from dataclasses import dataclass
from types import MappingProxyType
from typing import List, Tuple

import pandas as pd

from casa_metrics import CASACalculator, classify_motility, format_report
from config import AnalysisConfig, TrackerConfig, load_config
from contour_detector import ContourDetector
from detection import Detection, DetectionPipeline
from utils.geometry import distance
from utils.video_reader import probe_video, read_video

logger = logging.getLogger(__name__)

FRAME_COLUMNS = ['Frame #', 'Tracked', 'Motile', 'Immotile',
                 'VCL', 'VSL', 'LIN', 'Motility %']


@dataclass(frozen=True)
class Position:
    x: float
    y: float


@dataclass(frozen=True)
class TrackedObjectSnapshot:
    """Read-only view of a track for one frame"""
    id: int
    bbox: Tuple[float, float, float, float]
    confidence: float
    velocity: float    # pixels per frame
    is_motile: bool
    trajectory: Tuple[Tuple[float, float], ...]


class Track:
    """Single sperm followed across frames"""

    def __init__(self, track_id, detection: Detection, max_trajectory_length=30):
        self.id = track_id
        self.bbox = detection.as_box()
        self.confidence = detection.confidence
        self.frames_since_update = 0
        self.trajectory = deque(maxlen=max_trajectory_length)
        self.trajectory.append(Position(*detection.center))

    @property
    def last_position(self) -> Position:
        return self.trajectory[-1]

    def update(self, detection: Detection):
        self.bbox = detection.as_box()
        self.confidence = detection.confidence
        self.frames_since_update = 0
        # deque drops the oldest point once full
        self.trajectory.append(Position(*detection.center))

    def mark_missed(self):
        self.frames_since_update += 1

    def calculate_velocity(self, window=5) -> float:
        """Average step length over the most recent points, pixels per frame"""
        recent = list(self.trajectory)[-window:]
        if len(recent) < 2:
            return 0.0

        total = 0.0
        for i in range(1, len(recent)):
            total += distance((recent[i].x, recent[i].y), (recent[i - 1].x, recent[i - 1].y))
        return total / (len(recent) - 1)

    def snapshot(self, velocity_window=5, motile_speed=2.0) -> TrackedObjectSnapshot:
        velocity = self.calculate_velocity(velocity_window)
        return TrackedObjectSnapshot(
            id=self.id,
            bbox=self.bbox,
            confidence=self.confidence,
            velocity=velocity,
            is_motile=velocity > motile_speed,
            trajectory=tuple((p.x, p.y) for p in self.trajectory),
        )


class TrackManager:
    """Greedy nearest-centroid tracker.

    Each detection, in input order, takes the closest track not yet matched
    in this frame (first one wins on ties) if it lies within
    max_match_distance. This is not a globally optimal assignment, so
    crossing sperm can swap identities.

    Not thread safe: call step() from one thread, once per frame, in
    frame order.
    """

    def __init__(self, config: TrackerConfig = None):
        self.config = config or TrackerConfig()
        self._tracks = OrderedDict()
        self.next_id = 1

    @property
    def tracks(self):
        """Read-only id -> Track view of the live population"""
        return MappingProxyType(self._tracks)

    def __len__(self):
        return len(self._tracks)

    def register(self, detection: Detection) -> Track:
        track = Track(self.next_id, detection, self.config.max_trajectory_length)
        self._tracks[track.id] = track
        self.next_id += 1
        return track

    def deregister(self, track_id):
        del self._tracks[track_id]

    def _closest_track(self, center, matched):
        best_id = None
        best_distance = math.inf
        for track_id, track in self._tracks.items():
            if track_id in matched:
                continue
            d = distance(center, (track.last_position.x, track.last_position.y))
            if d < best_distance:
                best_distance = d
                best_id = track_id
        return best_id, best_distance

    def step(self, detections: List[Detection]) -> List[TrackedObjectSnapshot]:
        matched = set()

        for detection in detections:
            track_id, d = self._closest_track(detection.center, matched)
            if track_id is not None and d < self.config.max_match_distance:
                self._tracks[track_id].update(detection)
                matched.add(track_id)
            elif len(self._tracks) < self.config.max_trackers:
                matched.add(self.register(detection).id)

        for track_id, track in list(self._tracks.items()):
            if track_id not in matched:
                track.mark_missed()
            if track.frames_since_update > self.config.max_frames_since_update:
                self.deregister(track_id)

        logger.debug("Active trackers: %d", len(self._tracks))
        return self.get_tracked_objects()

    def get_tracked_objects(self) -> List[TrackedObjectSnapshot]:
        return [
            track.snapshot(self.config.velocity_window, self.config.motile_speed_px)
            for track in self._tracks.values()
        ]

    def reset(self):
        self._tracks.clear()
        self.next_id = 1


class AnalysisEngine:
    """Raw detector output -> tracked objects, one call per frame"""

    def __init__(self, config: AnalysisConfig = None):
        self.config = config or AnalysisConfig()
        self.pipeline = DetectionPipeline(self.config.detection)
        self.tracker = TrackManager(self.config.tracker)

    def process_detections(self, raw) -> List[TrackedObjectSnapshot]:
        return self.tracker.step(self.pipeline.run(raw))

    def reset(self):
        self.tracker.reset()


class SpermMotilityAnalyzer:
    def __init__(self, config: AnalysisConfig = None, detector=None):
        self.config = config or AnalysisConfig()
        self.engine = AnalysisEngine(self.config)
        self.calculator = CASACalculator(self.config.kinematics)
        # any callable frame -> flat (cx, cy, w, h, conf, cls) buffer
        self.detector = detector or ContourDetector(resolution=self.config.detection.input_resolution)

        self.frame_data = []
        self.last_snapshots: List[TrackedObjectSnapshot] = []

    def process_frame(self, frame) -> List[TrackedObjectSnapshot]:
        snapshots = self.engine.process_detections(self.detector(frame))
        metrics = self.calculator.calculate_metrics(snapshots)

        motile_count = sum(1 for s in snapshots if s.is_motile)
        self.frame_data.append({
            'Frame #': len(self.frame_data) + 1,
            'Tracked': len(snapshots),
            'Motile': motile_count,
            'Immotile': len(snapshots) - motile_count,
            'VCL': metrics.vcl,
            'VSL': metrics.vsl,
            'LIN': metrics.lin,
            'Motility %': metrics.motility,
        })
        self.last_snapshots = snapshots
        return snapshots

    def results(self) -> pd.DataFrame:
        return pd.DataFrame(self.frame_data, columns=FRAME_COLUMNS)

    def summary(self):
        return (self.calculator.calculate_metrics(self.last_snapshots),
                self.calculator.calculate_advanced_metrics(self.last_snapshots))

    def analyze_video(self, video_path, output_dir="output"):
        """Run the whole video and write the CSV reports to output_dir"""
        os.makedirs(output_dir, exist_ok=True)

        info = probe_video(video_path)
        fps = self.config.kinematics.frame_rate
        if info['fps'] and abs(info['fps'] - fps) > 0.5:
            logger.warning("Video reports %.1f FPS but metrics use %.1f FPS", info['fps'], fps)
        logger.info("Processing video: %d frames at %.1f FPS", info['frame_count'], info['fps'])

        self.engine.reset()
        self.frame_data = []
        self.last_snapshots = []

        for frame in read_video(video_path):
            self.process_frame(frame)
            frame_number = len(self.frame_data)
            if frame_number % 50 == 0 and info['frame_count'] > 0:
                logger.info("Progress: %.1f%%", frame_number / info['frame_count'] * 100)

        df = self.results()
        csv_path = os.path.join(output_dir, 'sperm_motility_analysis.csv')
        df.to_csv(csv_path, index=False)

        tracks_path = os.path.join(output_dir, 'sperm_track_metrics.csv')
        self.calculator.track_table(self.last_snapshots).to_csv(tracks_path, index=False)

        logger.info("CSV report: %s", csv_path)
        logger.info("Track metrics: %s", tracks_path)
        return df


def main(argv=None):
    parser = argparse.ArgumentParser(description="Sperm motility analysis (CASA)")
    parser.add_argument("video", help="Input video file")
    parser.add_argument("-c", "--config", action="append", default=[],
                        help="YAML config file, may be given several times")
    parser.add_argument("-o", "--output-dir", default="output")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(asctime)s - %(levelname)s - %(message)s')

    analyzer = SpermMotilityAnalyzer(load_config(args.config))
    results_df = analyzer.analyze_video(args.video, output_dir=args.output_dir)
    metrics, advanced = analyzer.summary()

    print("\nSummary:")
    print(f"Frames processed: {len(results_df)}")
    if len(results_df):
        print(f"Average tracked per frame: {results_df['Tracked'].mean():.1f}")
        print(f"Average motile: {results_df['Motile'].mean():.1f}")
        print(f"Average immotile: {results_df['Immotile'].mean():.1f}")
    print(format_report(metrics, advanced))
    print(f"Classification: {classify_motility(metrics.motility)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
