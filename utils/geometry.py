import math


def box_center(box):
    """Center (x, y) of a (left, top, right, bottom) box"""
    left, top, right, bottom = box
    return ((left + right) / 2.0, (top + bottom) / 2.0)


def iou(box_a, box_b):
    """Intersection over union of two (left, top, right, bottom) boxes"""
    inter_left = max(box_a[0], box_b[0])
    inter_top = max(box_a[1], box_b[1])
    inter_right = min(box_a[2], box_b[2])
    inter_bottom = min(box_a[3], box_b[3])

    if inter_left >= inter_right or inter_top >= inter_bottom:
        return 0.0

    inter_area = (inter_right - inter_left) * (inter_bottom - inter_top)
    area_a = (box_a[2] - box_a[0]) * (box_a[3] - box_a[1])
    area_b = (box_b[2] - box_b[0]) * (box_b[3] - box_b[1])
    union = area_a + area_b - inter_area

    if union <= 0:
        return 0.0
    return inter_area / union


def distance(p, q):
    dx = p[0] - q[0]
    dy = p[1] - q[1]
    return math.sqrt(dx * dx + dy * dy)


def perpendicular_distance(point, line_start, line_end):
    """Distance from point to the infinite line through line_start/line_end.

    Uses the line equation A*x + B*y + C = 0. A zero-length line has no
    direction, so 0.0 is returned for it.
    """
    a = line_end[1] - line_start[1]
    b = line_start[0] - line_end[0]
    c = line_end[0] * line_start[1] - line_start[0] * line_end[1]

    norm = math.sqrt(a * a + b * b)
    if norm == 0:
        return 0.0
    return abs(a * point[0] + b * point[1] + c) / norm
