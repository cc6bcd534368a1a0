"""
Unit tests for VideoCaptureFrameProvider and parse_source

The capture device is replaced with a fake object so no camera is needed.
"""

import logging

import numpy as np
import pytest

from cupertino_tld.detector.frame_provider import (
    FrameProviderError,
    VideoCaptureFrameProvider,
    parse_source,
)


class FakeCapture:
    """Stands in for cv2.VideoCapture: yields `count` frames, then nothing."""

    def __init__(self, count: int):
        self.remaining = count
        self.released = False

    def read(self):
        if self.remaining == 0:
            return False, None
        self.remaining -= 1
        return True, np.zeros((4, 4, 3), dtype=np.uint8)

    def release(self):
        self.released = True


def opened_provider(count: int) -> VideoCaptureFrameProvider:
    provider = VideoCaptureFrameProvider("fake.mp4")
    provider._capture = FakeCapture(count)
    return provider


class TestParseSource:
    def test_digit_string_is_camera_index(self):
        assert parse_source(" 2 ") == 2

    def test_uri_kept(self):
        assert parse_source("rtsp://camera/stream") == "rtsp://camera/stream"

    def test_empty_rejected(self):
        with pytest.raises(ValueError, match="empty"):
            parse_source("   ")


class TestVideoCaptureFrameProvider:
    def test_next_frame_before_open_raises(self):
        with pytest.raises(FrameProviderError, match="not open"):
            VideoCaptureFrameProvider(0).next_frame()

    def test_release_balances_outstanding(self):
        provider = opened_provider(2)

        first = provider.next_frame()
        second = provider.next_frame()
        assert provider.outstanding_frames == 2

        provider.release(first)
        provider.release(second)
        assert provider.outstanding_frames == 0

    def test_exhausted_source_returns_none(self):
        provider = opened_provider(1)

        provider.release(provider.next_frame())

        assert provider.next_frame() is None
        assert provider.outstanding_frames == 0

    def test_close_warns_about_unreleased_frames(self, caplog):
        provider = opened_provider(3)
        capture = provider._capture
        provider.next_frame()

        with caplog.at_level(logging.WARNING, logger="cupertino_tld.detector.frame_provider"):
            provider.close()

        assert capture.released
        warnings = [r for r in caplog.records if getattr(r, "event", None) == "release_missing"]
        assert len(warnings) == 1
        assert warnings[0].outstanding_frames == 1

    def test_close_is_idempotent(self):
        provider = opened_provider(1)
        provider.close()
        provider.close()

        with pytest.raises(FrameProviderError):
            provider.next_frame()
