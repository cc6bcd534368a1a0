"""
Unit tests for the frame classifier

Synthetic frames: black background, lamps painted with cv2.circle at the
same centers and radius the classifier masks with, so the mean inside each
disk is exactly the painted value.
"""

import cv2
import numpy as np
import pytest

from cupertino_tld.detector.classifier import (
    MARKER_COLORS,
    ClassificationError,
    ClassificationResult,
    FrameClassifier,
    FrameEncodingError,
    LampState,
    decide_state,
    encode_jpeg,
    measure_lamps,
    region_in_bounds,
    to_luminance,
)
from cupertino_tld.detector.lamp_config import LampConfig, LampPosition

FRAME_HEIGHT = 240
FRAME_WIDTH = 320


@pytest.fixture
def config():
    return LampConfig(
        master_x=100,
        master_y=20,
        master_width=60,
        master_height=180,
        lamps=(LampPosition(30, 30), LampPosition(30, 90), LampPosition(30, 150)),
        lamp_radius=10,
        min_brightness_threshold=80,
    ).validate()


def paint(config, values, color=False):
    """Frame with lamp i painted at luminance values[i]."""
    frame = np.zeros((FRAME_HEIGHT, FRAME_WIDTH), dtype=np.uint8)
    for lamp, value in zip(config.lamps, values):
        center = (config.master_x + lamp.x, config.master_y + lamp.y)
        cv2.circle(frame, center, config.lamp_radius, int(value), cv2.FILLED)
    if color:
        return cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR)
    return frame


class TestDecideState:
    def test_brightest_above_threshold_wins(self):
        assert decide_state((30.0, 200.0, 40.0), 80) is LampState.YELLOW

    def test_max_equal_to_threshold_is_unknown(self):
        assert decide_state((80.0, 10.0, 10.0), 80) is LampState.UNKNOWN

    def test_all_below_threshold_is_unknown(self):
        assert decide_state((79.9, 50.0, 12.0), 80) is LampState.UNKNOWN

    def test_tie_goes_to_lower_index(self):
        assert decide_state((150.0, 150.0, 150.0), 80) is LampState.RED
        assert decide_state((10.0, 150.0, 150.0), 80) is LampState.YELLOW

    def test_all_zero_is_unknown_even_with_zero_threshold(self):
        assert decide_state((0.0, 0.0, 0.0), 0) is LampState.UNKNOWN

    def test_fewer_lamps(self):
        assert decide_state((10.0, 120.0), 80) is LampState.YELLOW
        assert decide_state((), 80) is LampState.UNKNOWN


class TestRegionInBounds:
    def test_full_frame_region(self, config):
        assert region_in_bounds(config, FRAME_WIDTH, FRAME_HEIGHT)

    def test_region_touching_right_edge(self, config):
        edge = config.merged({"master_roi_x": FRAME_WIDTH - config.master_width})
        assert region_in_bounds(edge, FRAME_WIDTH, FRAME_HEIGHT)

    def test_region_past_right_edge(self, config):
        past = config.merged({"master_roi_x": FRAME_WIDTH - config.master_width + 1})
        assert not region_in_bounds(past, FRAME_WIDTH, FRAME_HEIGHT)

    def test_region_past_bottom_edge(self, config):
        past = config.merged({"master_roi_y": FRAME_HEIGHT})
        assert not region_in_bounds(past, FRAME_WIDTH, FRAME_HEIGHT)


class TestMeasureLamps:
    def test_disk_mean_matches_painted_value(self, config):
        frame = paint(config, (255, 100, 0))
        crop = frame[20:200, 100:160]

        brightness = measure_lamps(crop, config)

        assert brightness == pytest.approx((255.0, 100.0, 0.0))

    def test_color_and_gray_frames_agree(self, config):
        gray = paint(config, (200, 50, 0))
        color = paint(config, (200, 50, 0), color=True)
        assert np.array_equal(to_luminance(gray), to_luminance(color))


class TestFrameClassifier:
    def test_red_end_to_end(self, config):
        classifier = FrameClassifier()
        result, annotated = classifier.classify(paint(config, (255, 0, 0), color=True), config)

        assert result.label is LampState.RED
        assert result.in_bounds
        assert result.brightness[0] == pytest.approx(255.0)
        assert tuple(int(c) for c in annotated[30, 30]) == MARKER_COLORS[LampState.RED]

    def test_green_lit(self, config):
        result, _ = FrameClassifier().classify(paint(config, (20, 20, 230)), config)
        assert result.label is LampState.GREEN

    def test_all_black_frame_is_unknown(self, config):
        frame = np.zeros((FRAME_HEIGHT, FRAME_WIDTH, 3), dtype=np.uint8)
        result, annotated = FrameClassifier().classify(frame, config)

        assert result.label is LampState.UNKNOWN
        assert tuple(int(c) for c in annotated[30, 30]) == MARKER_COLORS[LampState.UNKNOWN]

    def test_brightness_at_threshold_is_unknown(self, config):
        result, _ = FrameClassifier().classify(paint(config, (80, 0, 0)), config)
        assert result.label is LampState.UNKNOWN

    def test_threshold_raised_changes_label(self, config):
        frame = paint(config, (150, 0, 0))
        classifier = FrameClassifier()

        assert classifier.classify(frame, config)[0].label is LampState.RED
        raised = config.merged({"min_brightness_threshold": 200})
        assert classifier.classify(frame, raised)[0].label is LampState.UNKNOWN

    def test_out_of_bounds_degrades_to_unknown(self, config):
        frame = paint(config, (255, 0, 0), color=True)
        out = config.merged({"master_roi_x": FRAME_WIDTH - 10})

        result, annotated = FrameClassifier().classify(frame, out)

        assert result.label is LampState.UNKNOWN
        assert not result.in_bounds
        assert result.brightness == ()
        assert annotated.shape == frame.shape
        assert tuple(int(c) for c in annotated[30, 30]) == MARKER_COLORS[LampState.UNKNOWN]

    def test_out_of_bounds_recovers(self, config):
        classifier = FrameClassifier()
        frame = paint(config, (255, 0, 0))

        classifier.classify(frame, config.merged({"master_roi_y": FRAME_HEIGHT - 1}))
        result, _ = classifier.classify(frame, config)

        assert result.label is LampState.RED

    def test_input_frame_not_modified(self, config):
        frame = paint(config, (255, 0, 0), color=True)
        original = frame.copy()

        FrameClassifier().classify(frame, config)

        assert np.array_equal(frame, original)

    def test_gray_frame_annotated_as_bgr(self, config):
        _, annotated = FrameClassifier().classify(paint(config, (0, 255, 0)), config)
        assert annotated.ndim == 3 and annotated.shape[2] == 3
        assert tuple(int(c) for c in annotated[30, 30]) == MARKER_COLORS[LampState.YELLOW]

    def test_custom_marker_position(self, config):
        classifier = FrameClassifier(marker_center=(290, 210), marker_radius=5, annotate_regions=False)
        _, annotated = classifier.classify(paint(config, (0, 0, 255)), config)
        assert tuple(int(c) for c in annotated[210, 290]) == MARKER_COLORS[LampState.GREEN]

    def test_unsupported_layout_raises_classification_error(self, config):
        frame = np.zeros((FRAME_HEIGHT, FRAME_WIDTH, 5), dtype=np.uint8)
        with pytest.raises(ClassificationError, match="shape"):
            FrameClassifier().classify(frame, config)

    def test_unrepresentable_radius_raises_classification_error(self, config):
        unchecked = config.merged({"lamp_radius": 2 ** 40})
        frame = np.zeros((FRAME_HEIGHT, FRAME_WIDTH, 3), dtype=np.uint8)
        with pytest.raises(ClassificationError):
            FrameClassifier().classify(frame, unchecked)


class TestClassificationResult:
    def test_brightest_index_prefers_lower_on_tie(self):
        result = ClassificationResult(LampState.RED, (120.0, 120.0, 3.0), threshold=80)
        assert result.brightest_index == 0

    def test_brightest_index_none_when_nothing_measured(self):
        result = ClassificationResult(LampState.UNKNOWN, (), threshold=80, in_bounds=False)
        assert result.brightest_index is None


class TestEncodeJpeg:
    def test_encodes_jpeg_bytes(self):
        image = np.full((48, 64, 3), 127, dtype=np.uint8)
        data = encode_jpeg(image, quality=75)

        assert isinstance(data, bytes)
        assert data[:2] == b"\xff\xd8"
        assert data[-2:] == b"\xff\xd9"

    def test_empty_image_raises_encoding_error(self):
        with pytest.raises((FrameEncodingError, cv2.error)):
            encode_jpeg(np.zeros((0, 0, 3), dtype=np.uint8))
