import logging
from dataclasses import dataclass
from typing import List, Sequence

import numpy as np

from config import DetectionConfig
from utils.geometry import box_center, iou

logger = logging.getLogger(__name__)

# (x_center, y_center, width, height, confidence, class_id)
TUPLE_SIZE = 6


@dataclass(frozen=True)
class Detection:
    """Single detector hit for one frame, in pixel coordinates."""
    left: float
    top: float
    right: float
    bottom: float
    confidence: float
    class_id: int = 0

    def as_box(self):
        return (self.left, self.top, self.right, self.bottom)

    @property
    def center(self):
        return box_center(self.as_box())

    @property
    def width(self):
        return self.right - self.left

    @property
    def height(self):
        return self.bottom - self.top

    @property
    def area(self):
        return self.width * self.height


def to_rows(raw) -> np.ndarray:
    """Reshape a flat detector buffer into (n, 6) rows.

    A partial tail and any row holding NaN or inf are dropped.
    """
    flat = np.asarray(raw, dtype=float).ravel()
    n = flat.size // TUPLE_SIZE
    rows = flat[: n * TUPLE_SIZE].reshape(n, TUPLE_SIZE)
    return rows[np.isfinite(rows).all(axis=1)]


def decode(raw, resolution: float, confidence_threshold: float) -> List[Detection]:
    """Decode normalized (cx, cy, w, h, conf, cls) tuples into pixel boxes.

    Tuples whose confidence is not above the threshold are dropped.
    """
    detections = []
    for cx, cy, w, h, conf, cls in to_rows(raw):
        if not conf > confidence_threshold:
            continue
        detections.append(Detection(
            left=float((cx - w / 2) * resolution),
            top=float((cy - h / 2) * resolution),
            right=float((cx + w / 2) * resolution),
            bottom=float((cy + h / 2) * resolution),
            confidence=float(conf),
            class_id=int(cls),
        ))
    return detections


def suppress(detections: Sequence[Detection], iou_threshold: float) -> List[Detection]:
    """Greedy non-maximum suppression.

    Highest confidence first; equal confidences keep their input order.
    A detection survives only if its IoU with every kept one is at most
    iou_threshold.
    """
    ordered = sorted(detections, key=lambda d: d.confidence, reverse=True)
    kept: List[Detection] = []
    for det in ordered:
        box = det.as_box()
        if all(iou(box, k.as_box()) <= iou_threshold for k in kept):
            kept.append(det)
    return kept


class DetectionPipeline:
    """Raw detector buffer -> confident, non-overlapping detections."""

    def __init__(self, config: DetectionConfig = None):
        self.config = config or DetectionConfig()

    def run(self, raw) -> List[Detection]:
        detections = decode(raw, self.config.input_resolution,
                            self.config.confidence_threshold)
        logger.debug("Parsed %d detections from model output", len(detections))

        filtered = suppress(detections, self.config.nms_threshold)
        logger.debug("Filtered %d detections to %d after NMS",
                     len(detections), len(filtered))
        return filtered
