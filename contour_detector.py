import logging

import cv2
import numpy as np

logger = logging.getLogger(__name__)


class ContourDetector:
    """Classical bright-head detector for phase-contrast sperm videos.

    Produces the same flat buffer a neural detector would: one
    (cx, cy, w, h, confidence, class_id) tuple per head, normalized by
    `resolution` so that decoding with the same resolution gives back
    frame pixel coordinates.
    """

    def __init__(self, resolution=640, brightness_threshold=180, tophat_threshold=25):
        self.resolution = resolution
        self.brightness_threshold = brightness_threshold
        self.tophat_threshold = tophat_threshold

    def preprocess_frame(self, frame):
        """Binary mask of candidate sperm heads"""
        gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY) if frame.ndim == 3 else frame

        # Manual threshold instead of OTSU for better control
        _, bright_thresh = cv2.threshold(gray, self.brightness_threshold, 255, cv2.THRESH_BINARY)

        # Top-hat picks up small bright objects on an uneven background
        kernel = cv2.getStructuringElement(cv2.MORPH_ELLIPSE, (8, 8))
        tophat = cv2.morphologyEx(gray, cv2.MORPH_TOPHAT, kernel)
        _, tophat_thresh = cv2.threshold(tophat, self.tophat_threshold, 255, cv2.THRESH_BINARY)

        combined = cv2.bitwise_or(bright_thresh, tophat_thresh)

        kernel_clean = cv2.getStructuringElement(cv2.MORPH_ELLIPSE, (2, 2))
        cleaned = cv2.morphologyEx(combined, cv2.MORPH_OPEN, kernel_clean)
        cleaned = cv2.morphologyEx(cleaned, cv2.MORPH_ERODE, kernel_clean, iterations=1)

        kernel_dilate = cv2.getStructuringElement(cv2.MORPH_ELLIPSE, (3, 3))
        return cv2.dilate(cleaned, kernel_dilate, iterations=1)

    @staticmethod
    def classify_contour(contour):
        """Head pattern name for a contour, or None when it is rejected"""
        area = cv2.contourArea(contour)
        if area < 10 or area > 300:
            return None

        x, y, w, h = cv2.boundingRect(contour)
        if w < 3 or h < 3 or w > 60 or h > 60:
            return None

        perimeter = cv2.arcLength(contour, True)
        if perimeter == 0:
            return None

        aspect_ratio = max(w, h) / min(w, h)
        circularity = 4 * np.pi * area / (perimeter * perimeter)
        hull_area = cv2.contourArea(cv2.convexHull(contour))
        solidity = area / hull_area if hull_area > 0 else 0
        extent = area / (w * h)

        # Compact circular/oval head
        if circularity > 0.4 and solidity > 0.6:
            return "circular"
        # Head with visible tail
        if circularity > 0.2 and 2.0 < aspect_ratio < 6.0 and solidity > 0.5:
            return "elongated"
        # Irregular bright halo
        if 0.1 < circularity < 0.4 and extent > 0.3 and solidity > 0.3 and 15 < area < 250:
            return "halo"
        # Slightly bloomed head
        if 20 < area < 200 and extent > 0.4 and aspect_ratio < 3.0:
            return "bloomed"
        return None

    def find_heads(self, frame):
        """Boxes (left, top, right, bottom) of accepted heads.

        Corners are the outermost pixel centers, so the box center is the
        center of the blob.
        """
        processed = self.preprocess_frame(frame)
        contours, _ = cv2.findContours(processed, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)

        boxes = []
        for contour in contours:
            if self.classify_contour(contour) is None:
                continue
            x, y, w, h = cv2.boundingRect(contour)
            boxes.append((x, y, x + w - 1, y + h - 1))

        logger.debug("Accepted %d of %d contours", len(boxes), len(contours))
        return boxes

    def __call__(self, frame):
        """Flat raw detection buffer for one frame"""
        rows = []
        for left, top, right, bottom in self.find_heads(frame):
            rows.append((
                (left + right) / 2.0 / self.resolution,
                (top + bottom) / 2.0 / self.resolution,
                (right - left) / self.resolution,
                (bottom - top) / self.resolution,
                1.0,
                0.0,
            ))
        return np.asarray(rows, dtype=float).ravel()
