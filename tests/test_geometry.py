import math

import pytest

from utils.geometry import box_center, distance, iou, perpendicular_distance


def test_box_center():
    assert box_center((100, 50, 200, 150)) == (150, 100)


def test_iou_identical_boxes():
    box = (10, 10, 50, 30)
    assert iou(box, box) == pytest.approx(1.0)


def test_iou_is_symmetric():
    a = (0, 0, 10, 10)
    b = (5, 5, 20, 12)
    assert iou(a, b) == iou(b, a)


def test_iou_partial_overlap():
    """Two 10x10 boxes shifted by half a width share 50 of 150 pixels."""
    a = (0, 0, 10, 10)
    b = (5, 0, 15, 10)
    assert iou(a, b) == pytest.approx(50 / 150)


def test_iou_disjoint_and_touching_boxes():
    assert iou((0, 0, 10, 10), (20, 20, 30, 30)) == 0.0
    # shared edge has no area
    assert iou((0, 0, 10, 10), (10, 0, 20, 10)) == 0.0


def test_iou_degenerate_boxes():
    point_box = (5, 5, 5, 5)
    assert iou(point_box, point_box) == 0.0
    assert iou(point_box, (0, 0, 10, 10)) == 0.0


def test_distance():
    assert distance((0, 0), (3, 4)) == pytest.approx(5.0)
    assert distance((1, 1), (1, 1)) == 0.0


def test_perpendicular_distance_to_horizontal_line():
    assert perpendicular_distance((5, 3), (0, 0), (10, 0)) == pytest.approx(3.0)
    assert perpendicular_distance((5, -3), (0, 0), (10, 0)) == pytest.approx(3.0)


def test_perpendicular_distance_uses_infinite_line():
    """Points beyond the segment ends still measure to the extended line."""
    assert perpendicular_distance((20, 4), (0, 0), (10, 0)) == pytest.approx(4.0)


def test_perpendicular_distance_diagonal():
    d = perpendicular_distance((0, 2), (0, 0), (2, 2))
    assert d == pytest.approx(math.sqrt(2))


def test_perpendicular_distance_zero_length_line():
    assert perpendicular_distance((3, 3), (1, 1), (1, 1)) == 0.0
