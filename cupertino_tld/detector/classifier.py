"""
Frame Classifier
================

Classifies which lamp of a signal head is lit from the luminance inside a
disk around each lamp center, and draws the operator feedback marker.

Algorithm (per frame):
1. Master region outside the frame -> UNKNOWN, gray marker, warning text.
2. Crop the luminance plane to the master region.
3. Mean luminance inside a filled disk around each lamp center.
4. Brightest lamp wins if its mean exceeds the threshold; ties go to the
   lower index (RED before YELLOW before GREEN).
5. Annotated BGR copy of the full frame with a marker in the state color.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

import cv2
import numpy as np

from cupertino_tld.detector.lamp_config import LampConfig
from cupertino_tld.logging_utils import get_component_logger

logger = get_component_logger(__name__, "classifier")


class LampState(str, Enum):
    """Discrete lamp state"""

    RED = "RED"
    YELLOW = "YELLOW"
    GREEN = "GREEN"
    UNKNOWN = "UNKNOWN"


# Index of a lamp in LampConfig.lamps -> state it signals
LABEL_ORDER: Tuple[LampState, ...] = (LampState.RED, LampState.YELLOW, LampState.GREEN)

# BGR marker colors
MARKER_COLORS = {
    LampState.RED: (0, 0, 255),
    LampState.YELLOW: (0, 255, 255),
    LampState.GREEN: (0, 255, 0),
    LampState.UNKNOWN: (128, 128, 128),
}

WARNING_COLOR = (0, 165, 255)
REGION_COLOR = (255, 255, 255)


class FrameEncodingError(RuntimeError):
    """JPEG encoder rejected the annotated image."""
    pass


class ClassificationError(RuntimeError):
    """Frame could not be measured or annotated with the given configuration."""
    pass


@dataclass(frozen=True)
class ClassificationResult:
    """Outcome of one classification cycle"""

    label: LampState
    brightness: Tuple[float, ...]
    """Mean luminance per lamp, in LampConfig.lamps order (empty when out of bounds)"""

    threshold: int
    in_bounds: bool = True

    @property
    def brightest_index(self) -> Optional[int]:
        """Index of the brightest lamp (first wins ties), None if nothing measured."""
        if not self.brightness:
            return None
        return max(range(len(self.brightness)), key=lambda i: (self.brightness[i], -i))


def region_in_bounds(config: LampConfig, frame_width: int, frame_height: int) -> bool:
    """True when the master region lies fully inside a frame of the given size."""
    return not (
        config.master_width <= 0
        or config.master_height <= 0
        or config.master_x < 0
        or config.master_y < 0
        or config.master_x + config.master_width > frame_width
        or config.master_y + config.master_height > frame_height
    )


def to_luminance(image: np.ndarray) -> np.ndarray:
    """
    Luminance plane of an image.

    2-D images are already luminance (e.g. the Y plane of an NV12 buffer);
    colour images are converted with the BT.601 weights cv2 uses for GRAY.
    """
    if image.ndim == 2:
        return image
    channels = image.shape[2]
    if channels == 1:
        return image[:, :, 0]
    if channels == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    if channels == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
    raise ValueError(f"Unsupported frame layout: shape={image.shape}")


def to_bgr(image: np.ndarray) -> np.ndarray:
    """Independent BGR copy of an image, for drawing."""
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    channels = image.shape[2]
    if channels == 1:
        return cv2.cvtColor(image[:, :, 0], cv2.COLOR_GRAY2BGR)
    if channels == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
    return image.copy()


def measure_lamps(luma_crop: np.ndarray, config: LampConfig) -> Tuple[float, ...]:
    """
    Mean luminance inside a filled disk around each lamp center.

    Args:
        luma_crop: Luminance plane cropped to the master region
        config: Lamp positions (relative to the crop) and radius

    Returns:
        One mean per lamp, in config.lamps order
    """
    luma_crop = np.ascontiguousarray(luma_crop)
    values = []
    for lamp in config.lamps:
        mask = np.zeros(luma_crop.shape[:2], dtype=np.uint8)
        cv2.circle(mask, (int(lamp.x), int(lamp.y)), int(config.lamp_radius), 255, cv2.FILLED)
        values.append(float(cv2.mean(luma_crop, mask=mask)[0]))
    return tuple(values)


def decide_state(brightness: Tuple[float, ...], threshold: int) -> LampState:
    """
    Map per-lamp brightness to a state.

    Strict comparisons only: on equal brightness the lower index keeps the
    lead, and a maximum equal to the threshold is not lit.
    """
    brightest_index = -1
    max_luma = 0.0
    for index, value in enumerate(brightness):
        if value > max_luma:
            max_luma = value
            brightest_index = index

    if brightest_index >= 0 and max_luma > threshold:
        return LABEL_ORDER[brightest_index]
    return LampState.UNKNOWN


class FrameClassifier:
    """
    Classifies frames and produces the annotated image for the stream.

    Stateless apart from the out-of-bounds warning latch, so a single
    instance is owned by the classification loop thread.

    Args:
        marker_center: Marker position in frame pixels
        marker_radius: Marker radius in pixels
        annotate_regions: Outline master region and lamp disks (calibration aid)

    Example:
        >>> classifier = FrameClassifier()
        >>> result, annotated = classifier.classify(frame, store.snapshot())
        >>> result.label
        <LampState.RED: 'RED'>
    """

    def __init__(
        self,
        marker_center: Tuple[int, int] = (30, 30),
        marker_radius: int = 20,
        annotate_regions: bool = True,
    ):
        self.marker_center = (int(marker_center[0]), int(marker_center[1]))
        self.marker_radius = int(marker_radius)
        self.annotate_regions = annotate_regions
        self._out_of_bounds = False

    def classify(
        self, frame: np.ndarray, config: LampConfig
    ) -> Tuple[ClassificationResult, np.ndarray]:
        """
        Classify one frame.

        Never raises for a master region outside the frame: that degrades
        to UNKNOWN so a bad config edit cannot stop the loop.

        Returns:
            (ClassificationResult, annotated BGR image)

        Raises:
            ClassificationError: If OpenCV rejects the frame or the geometry
        """
        try:
            return self._classify(frame, config)
        except (cv2.error, ValueError, OverflowError) as e:
            raise ClassificationError(
                f"Unable to classify frame of shape {frame.shape}: {e}"
            ) from e

    def _classify(
        self, frame: np.ndarray, config: LampConfig
    ) -> Tuple[ClassificationResult, np.ndarray]:
        frame_height, frame_width = frame.shape[:2]

        if not region_in_bounds(config, frame_width, frame_height):
            self._warn_out_of_bounds(config, frame_width, frame_height)
            result = ClassificationResult(
                label=LampState.UNKNOWN,
                brightness=(),
                threshold=config.min_brightness_threshold,
                in_bounds=False,
            )
            return result, self._annotate_out_of_bounds(frame)

        if self._out_of_bounds:
            logger.info(
                "Master region back inside frame",
                extra={"event": "roi_in_bounds"},
            )
            self._out_of_bounds = False

        x, y = config.master_x, config.master_y
        crop = frame[y : y + config.master_height, x : x + config.master_width]
        brightness = measure_lamps(to_luminance(crop), config)
        label = decide_state(brightness, config.min_brightness_threshold)
        result = ClassificationResult(
            label=label,
            brightness=brightness,
            threshold=config.min_brightness_threshold,
        )

        logger.debug(
            f"Brightness {', '.join(f'{b:.1f}' for b in brightness)} "
            f"threshold {config.min_brightness_threshold} -> {label.value}",
            extra={
                "event": "frame_classified",
                "state": label.value,
                "brightness": list(brightness),
                "threshold": config.min_brightness_threshold,
                "brightest_index": result.brightest_index,
            },
        )
        return result, self._annotate(frame, config, label)

    def _annotate(self, frame: np.ndarray, config: LampConfig, label: LampState) -> np.ndarray:
        image = to_bgr(frame)

        if self.annotate_regions:
            top_left = (config.master_x, config.master_y)
            bottom_right = (
                config.master_x + config.master_width - 1,
                config.master_y + config.master_height - 1,
            )
            cv2.rectangle(image, top_left, bottom_right, REGION_COLOR, 1)
            for lamp, state in zip(config.lamps, LABEL_ORDER):
                center = (config.master_x + lamp.x, config.master_y + lamp.y)
                cv2.circle(image, center, config.lamp_radius, MARKER_COLORS[state], 1)

        cv2.circle(image, self.marker_center, self.marker_radius, MARKER_COLORS[label], cv2.FILLED)
        return image

    def _annotate_out_of_bounds(self, frame: np.ndarray) -> np.ndarray:
        image = to_bgr(frame)
        cv2.circle(
            image, self.marker_center, self.marker_radius,
            MARKER_COLORS[LampState.UNKNOWN], cv2.FILLED,
        )
        cv2.putText(
            image,
            "ROI OUT OF BOUNDS",
            (self.marker_center[0] + self.marker_radius + 10, self.marker_center[1] + 8),
            cv2.FONT_HERSHEY_SIMPLEX,
            0.6,
            WARNING_COLOR,
            2,
        )
        return image

    def _warn_out_of_bounds(self, config: LampConfig, frame_width: int, frame_height: int):
        # Log the transition only; the condition can persist for thousands of frames
        if self._out_of_bounds:
            return
        self._out_of_bounds = True
        logger.warning(
            "Master region outside frame, reporting UNKNOWN",
            extra={
                "event": "roi_out_of_bounds",
                "roi": [config.master_x, config.master_y, config.master_width, config.master_height],
                "frame_size": [frame_width, frame_height],
            },
        )


def encode_jpeg(image: np.ndarray, quality: int = 75) -> bytes:
    """
    Encode an image as JPEG.

    Raises:
        FrameEncodingError: If OpenCV fails to encode the image
    """
    ok, buffer = cv2.imencode(".jpg", image, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        raise FrameEncodingError(f"JPEG encoding failed for image of shape {image.shape}")
    return buffer.tobytes()
