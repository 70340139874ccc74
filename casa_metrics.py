"""
Computer Assisted Sperm Analysis (CASA) metrics from tracked trajectories.

Trajectories come in pixels and are converted to microns with the
calibration ratio; times come from the frame rate. A trajectory of n points
spans (n - 1) / frame_rate seconds.
"""

import logging
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np
import pandas as pd

from config import KinematicsConfig
from utils.geometry import perpendicular_distance

logger = logging.getLogger(__name__)

TRACK_TABLE_COLUMNS = ['id', 'points', 'VCL', 'VSL', 'VAP', 'LIN', 'WOB',
                       'BCF', 'ALH', 'motile', 'progressive']


@dataclass(frozen=True)
class IndividualMetrics:
    vcl: float
    vsl: float
    linearity: float
    is_motile: bool

    @classmethod
    def zero(cls):
        return cls(0.0, 0.0, 0.0, False)


@dataclass(frozen=True)
class CASAMetrics:
    vcl: float       # um/s
    vsl: float       # um/s
    lin: float       # %
    motility: float  # % of valid tracks

    @classmethod
    def zero(cls):
        return cls(0.0, 0.0, 0.0, 0.0)


@dataclass(frozen=True)
class AdvancedCASAMetrics:
    vap: float                   # Velocity Average Path, um/s
    wobble: float                # VCL/VAP, %
    beat_frequency: float        # Beat cross frequency, Hz
    amplitude: float             # Lateral head displacement, um
    progressive_motility: float  # %

    @classmethod
    def zero(cls):
        return cls(0.0, 0.0, 0.0, 0.0, 0.0)


def _trajectory_of(track):
    """Accept a snapshot (anything with .trajectory) or a bare point list."""
    return getattr(track, "trajectory", track)


class CASACalculator:
    def __init__(self, config: KinematicsConfig = None):
        self.config = config or KinematicsConfig()

    @property
    def frame_rate(self):
        return self.config.frame_rate

    def to_physical(self, trajectory) -> np.ndarray:
        """Pixel trajectory -> (n, 2) array in microns"""
        points = np.asarray(trajectory, dtype=float).reshape(-1, 2)
        return points * self.config.pixel_to_micron_ratio

    def _elapsed(self, points) -> float:
        return (len(points) - 1) / self.frame_rate

    @staticmethod
    def _path_length(points) -> float:
        steps = np.diff(points, axis=0)
        return float(np.hypot(steps[:, 0], steps[:, 1]).sum())

    def vcl(self, points) -> float:
        """Velocity Curvilinear - speed along the actual path"""
        if len(points) < 2:
            return 0.0
        elapsed = self._elapsed(points)
        return self._path_length(points) / elapsed if elapsed > 0 else 0.0

    def vsl(self, points) -> float:
        """Velocity Straight Line - first to last point"""
        if len(points) < 2:
            return 0.0
        dx, dy = points[-1][0] - points[0][0], points[-1][1] - points[0][1]
        elapsed = self._elapsed(points)
        return float(np.hypot(dx, dy)) / elapsed if elapsed > 0 else 0.0

    def smooth_trajectory(self, points) -> np.ndarray:
        """Centered moving average, window clamped at both ends"""
        points = np.asarray(points, dtype=float)
        window = self.config.smoothing_window
        if len(points) <= window:
            return points

        half = window // 2
        smoothed = np.empty_like(points)
        for i in range(len(points)):
            start = max(0, i - half)
            end = min(len(points) - 1, i + half)
            smoothed[i] = points[start:end + 1].mean(axis=0)
        return smoothed

    def vap(self, points) -> float:
        """Velocity Average Path - VCL of the smoothed path"""
        if len(points) < 3:
            return self.vsl(points)
        return self.vcl(self.smooth_trajectory(points))

    @staticmethod
    def find_peaks(values: Sequence[float]) -> List[int]:
        """Indices of strict local maxima"""
        return [
            i for i in range(1, len(values) - 1)
            if values[i] > values[i - 1] and values[i] > values[i + 1]
        ]

    def analyze_beat_pattern(self, points) -> Tuple[float, float]:
        """Beat cross frequency (Hz) and amplitude from lateral displacement
        around the straight first-to-last line.
        """
        if len(points) < self.config.min_beat_track_length:
            return 0.0, 0.0

        start, end = points[0], points[-1]
        if np.hypot(end[0] - start[0], end[1] - start[1]) == 0:
            return 0.0, 0.0

        lateral = [perpendicular_distance(p, start, end) for p in points]
        peaks = self.find_peaks(lateral)

        frequency = 0.0
        if len(peaks) > 1:
            frequency = (len(peaks) - 1) * self.frame_rate / len(points)
        amplitude = float(np.mean([lateral[i] for i in peaks])) if peaks else 0.0
        return frequency, amplitude

    def calculate_individual_metrics(self, track) -> IndividualMetrics:
        trajectory = _trajectory_of(track)
        if len(trajectory) < self.config.min_track_length:
            return IndividualMetrics.zero()

        points = self.to_physical(trajectory)
        vcl = self.vcl(points)
        vsl = self.vsl(points)
        linearity = (vsl / vcl) * 100.0 if vcl > 0 else 0.0
        return IndividualMetrics(vcl, vsl, linearity, vcl > self.config.motile_vcl)

    def is_progressive(self, track) -> bool:
        trajectory = _trajectory_of(track)
        if len(trajectory) < self.config.min_track_length:
            return False
        points = self.to_physical(trajectory)
        return self.vsl(points) > self.config.progressive_vsl

    def valid_tracks(self, tracks) -> list:
        return [t for t in tracks
                if len(_trajectory_of(t)) >= self.config.min_track_length]

    def calculate_metrics(self, tracks) -> CASAMetrics:
        """Population VCL/VSL/LIN means and motility percentage"""
        valid = self.valid_tracks(tracks)
        logger.debug("Calculating CASA metrics for %d tracked objects (%d valid)",
                     len(tracks), len(valid))
        if not valid:
            return CASAMetrics.zero()

        individual = [self.calculate_individual_metrics(t) for t in valid]
        motile_count = sum(1 for m in individual if m.is_motile)

        metrics = CASAMetrics(
            vcl=float(np.mean([m.vcl for m in individual])),
            vsl=float(np.mean([m.vsl for m in individual])),
            lin=float(np.mean([m.linearity for m in individual])),
            motility=motile_count / len(valid) * 100.0,
        )
        logger.debug("CASA Results - VCL: %.2f, VSL: %.2f, LIN: %.2f, MOT: %.2f%%",
                     metrics.vcl, metrics.vsl, metrics.lin, metrics.motility)
        return metrics

    def calculate_advanced_metrics(self, tracks) -> AdvancedCASAMetrics:
        """Population VAP/WOB/BCF/ALH means and progressive motility"""
        valid = self.valid_tracks(tracks)
        if not valid:
            return AdvancedCASAMetrics.zero()

        vap_values, wobble_values, frequencies, amplitudes = [], [], [], []
        progressive_count = 0
        for track in valid:
            points = self.to_physical(_trajectory_of(track))
            vcl = self.vcl(points)
            vap = self.vap(points)
            frequency, amplitude = self.analyze_beat_pattern(points)

            vap_values.append(vap)
            wobble_values.append((vcl / vap) * 100.0 if vap > 0 else 0.0)
            frequencies.append(frequency)
            amplitudes.append(amplitude)
            if self.vsl(points) > self.config.progressive_vsl:
                progressive_count += 1

        return AdvancedCASAMetrics(
            vap=float(np.mean(vap_values)),
            wobble=float(np.mean(wobble_values)),
            beat_frequency=float(np.mean(frequencies)),
            amplitude=float(np.mean(amplitudes)),
            progressive_motility=progressive_count / len(valid) * 100.0,
        )

    def track_table(self, tracks) -> pd.DataFrame:
        """One row of kinematics per valid track"""
        rows = []
        for track in self.valid_tracks(tracks):
            points = self.to_physical(_trajectory_of(track))
            basic = self.calculate_individual_metrics(track)
            vap = self.vap(points)
            frequency, amplitude = self.analyze_beat_pattern(points)
            rows.append({
                'id': getattr(track, 'id', len(rows)),
                'points': len(points),
                'VCL': basic.vcl,
                'VSL': basic.vsl,
                'VAP': vap,
                'LIN': basic.linearity,
                'WOB': (basic.vcl / vap) * 100.0 if vap > 0 else 0.0,
                'BCF': frequency,
                'ALH': amplitude,
                'motile': basic.is_motile,
                'progressive': self.vsl(points) > self.config.progressive_vsl,
            })
        return pd.DataFrame(rows, columns=TRACK_TABLE_COLUMNS)


def classify_motility(motile_percentage: float) -> str:
    if motile_percentage >= 40:
        return "Normal motility"
    elif motile_percentage >= 32:
        return "Below normal"
    return "Poor motility"


def format_report(metrics: CASAMetrics, advanced: AdvancedCASAMetrics = None) -> str:
    lines = [
        "CASA Metrics:",
        f"  VCL: {metrics.vcl:.2f} um/s",
        f"  VSL: {metrics.vsl:.2f} um/s",
        f"  LIN: {metrics.lin:.2f}%",
        f"  MOT: {metrics.motility:.2f}% ({classify_motility(metrics.motility)})",
    ]
    if advanced is not None:
        lines += [
            f"  VAP: {advanced.vap:.2f} um/s",
            f"  WOB: {advanced.wobble:.2f}%",
            f"  BCF: {advanced.beat_frequency:.2f} Hz",
            f"  ALH: {advanced.amplitude:.2f} um",
            f"  PR:  {advanced.progressive_motility:.2f}%",
        ]
    return "\n".join(lines)
