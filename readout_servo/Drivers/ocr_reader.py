"""
Screen OCR Reader - Readout Sensor via Screen Capture + Tesseract

This driver implements the SensorInterface by grabbing a screen region,
cleaning it up with OpenCV and recognizing it with Tesseract. The value
shown by the target application is the only feedback the servo gets.

Pipeline:
    - Capture: PIL.ImageGrab of the region -> RGB numpy array
    - Preprocess (one or more passes, best candidate wins):
        gentle: resize -> grayscale -> normalize -> sharpen
        hard:   resize -> grayscale -> normalize -> median -> threshold
    - Recognize: pytesseract, single line, numeric whitelist
    - Validate: mean word confidence, numeric parse, round to readout precision

Requires the tesseract binary on PATH in addition to the Python packages.
"""

import logging
import re
from collections import deque
from typing import Deque, Optional, Tuple

import numpy as np

try:
    import cv2
    CV2_AVAILABLE = True
except ImportError:
    CV2_AVAILABLE = False

try:
    import pytesseract
    from pytesseract import Output
    TESSERACT_AVAILABLE = True
except ImportError:
    pytesseract = None
    Output = None
    TESSERACT_AVAILABLE = False

try:
    from PIL import ImageGrab
    IMAGEGRAB_AVAILABLE = True
except ImportError:
    ImageGrab = None
    IMAGEGRAB_AVAILABLE = False

try:
    from ..interfaces.sensor_interface import SensorInterface, SensorError, SensorStatus
    from ..config import Region, SensorConfig, DEFAULT_SENSOR_CONFIG
except ImportError:
    from readout_servo.interfaces.sensor_interface import SensorInterface, SensorError, SensorStatus
    from readout_servo.config import Region, SensorConfig, DEFAULT_SENSOR_CONFIG

logger = logging.getLogger(__name__)

_NUMERIC_RE = re.compile(r"-?(?:\d+(?:\.\d*)?|\.\d+)")
_SHARPEN_KERNEL = np.array([[0, -1, 0], [-1, 5, -1], [0, -1, 0]], dtype=np.float32)


def clean_numeric_text(text: str) -> str:
    """Drop whitespace and anything that is not a digit, '.' or '-'."""
    return re.sub(r"[^0-9.\-]", "", text or "")


def score_numeric_text(text: str) -> int:
    """
    Heuristic quality score for a cleaned candidate.

    Longer, more number-like text scores higher: +2 for a leading
    (optionally signed) digit, +1 for a decimal point, +1 per character.
    Empty text scores -1.
    """
    if not text:
        return -1
    score = 0
    if re.match(r"-?\d", text):
        score += 2
    if "." in text:
        score += 1
    return score + len(text)


def parse_reading(text: str, decimals: int = 3) -> float:
    """
    Parse cleaned OCR text into a reading.

    Args:
        text: Candidate text (cleaned or raw)
        decimals: Readout precision to round to

    Returns:
        float: Parsed value

    Raises:
        SensorError: If the text is not a single well-formed number
    """
    cleaned = clean_numeric_text(text)
    if not _NUMERIC_RE.fullmatch(cleaned):
        raise SensorError(f"Readout is not numeric: {text!r}", raw_text=text)
    return round(float(cleaned), decimals)


class ScreenOCRReader(SensorInterface):
    """
    OCR readout sensor.

    Every read() grabs a fresh screenshot; nothing is cached between calls.
    """

    def __init__(self, config: Optional[SensorConfig] = None):
        """
        Initialize the OCR reader.

        Args:
            config: Tesseract and preprocessing parameters
        """
        super().__init__()
        self.config = config or DEFAULT_SENSOR_CONFIG
        self._last_status = SensorStatus.UNKNOWN

        if not CV2_AVAILABLE:
            raise ImportError(
                "OpenCV not available. Install with: pip install opencv-python"
            )
        if not TESSERACT_AVAILABLE:
            raise ImportError(
                "pytesseract not available. Install with: pip install pytesseract "
                "(and the tesseract-ocr binary)"
            )
        if not IMAGEGRAB_AVAILABLE:
            raise ImportError("Pillow ImageGrab not available. Install with: pip install Pillow")

        self._is_initialized = True

    def __repr__(self):
        return f"ScreenOCRReader(psm={self.config.psm}, passes={self.config.preprocess})"

    @property
    def tesseract_config(self) -> str:
        cfg = self.config
        return (
            f"--psm {cfg.psm} -c tessedit_char_whitelist={cfg.char_whitelist} "
            f"-c classify_bln_numeric_mode=1"
        )

    def _capture(self, region: Region) -> np.ndarray:
        """Grab a region of the screen as an RGB array."""
        image = ImageGrab.grab(bbox=region.bbox(), all_screens=self.config.all_screens)
        return np.asarray(image.convert("RGB"))

    def _preprocess(self, image: np.ndarray, mode: str) -> np.ndarray:
        """
        Apply one preprocessing pass.

        Args:
            image: RGB array
            mode: "gentle", "hard" or "none"

        Returns:
            np.ndarray: Single-channel image ready for Tesseract
        """
        gray = cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)
        if mode == "none":
            return gray

        height, width = gray.shape[:2]
        scale = self.config.resize_width / float(width)
        gray = cv2.resize(
            gray, (self.config.resize_width, max(1, int(round(height * scale)))),
            interpolation=cv2.INTER_CUBIC,
        )
        gray = cv2.normalize(gray, None, 0, 255, cv2.NORM_MINMAX)

        if mode == "gentle":
            return cv2.filter2D(gray, -1, _SHARPEN_KERNEL)
        if mode == "hard":
            gray = cv2.medianBlur(gray, 3)
            _, binary = cv2.threshold(gray, self.config.threshold, 255, cv2.THRESH_BINARY)
            return binary
        raise ValueError(f"Unknown preprocessing mode: {mode}")

    def _recognize(self, image: np.ndarray) -> Tuple[str, float]:
        """
        Run Tesseract on a preprocessed image.

        Returns:
            (text, confidence): concatenated words and mean word confidence (0-100)
        """
        data = pytesseract.image_to_data(image, config=self.tesseract_config, output_type=Output.DICT)
        words, confidences = [], []
        for word, conf in zip(data.get("text", []), data.get("conf", [])):
            conf = float(conf)
            if word and word.strip() and conf >= 0:
                words.append(word.strip())
                confidences.append(conf)
        confidence = float(np.mean(confidences)) if confidences else 0.0
        return "".join(words), confidence

    def _accept(self, text: str, confidence: float) -> float:
        """Validate a recognized candidate and record it as the latest reading."""
        cfg = self.config
        if confidence < cfg.min_confidence:
            self._last_status = SensorStatus.LOW_CONFIDENCE
            raise SensorError(
                f"OCR confidence {confidence:.1f} below {cfg.min_confidence:.1f} (text {text!r})",
                raw_text=text,
                confidence=confidence,
            )
        try:
            value = parse_reading(text, cfg.decimals)
        except SensorError as e:
            self._last_status = SensorStatus.UNPARSABLE
            e.confidence = confidence
            raise

        self._read_count += 1
        self._last_value = value
        self._last_status = SensorStatus.OK
        return value

    def read(self, region: Region) -> float:
        """
        Read the number shown in a screen region.

        Tries each configured preprocessing pass and keeps the best-scoring
        candidate, stopping early once one scores at least good_score.

        Raises:
            SensorError: On low confidence or non-numeric text
        """
        try:
            image = self._capture(region)
        except OSError as e:
            self._last_status = SensorStatus.ERROR
            raise SensorError(f"Screen capture failed for {region}: {e}") from e

        best_text, best_conf, best_score = "", 0.0, -1
        for mode in self.config.preprocess:
            text, confidence = self._recognize(self._preprocess(image, mode))
            cleaned = clean_numeric_text(text)
            score = score_numeric_text(cleaned)
            logger.debug(f"OCR [{mode}] {text!r} -> {cleaned!r} (score {score}, conf {confidence:.1f})")
            if score > best_score:
                best_text, best_conf, best_score = cleaned, confidence, score
            if best_score >= self.config.good_score:
                break

        return self._accept(best_text, best_conf)

    def get_status(self):
        status = super().get_status()
        status['status'] = self._last_status
        return status

    def _cleanup(self) -> None:
        """Nothing held between reads."""
        logger.debug("OCR reader cleanup completed")


class MockOCRReader(ScreenOCRReader):
    """
    Mock OCR reader for testing without a screen or Tesseract.

    Renders the SimulatedAxis value as readout text and feeds it through
    the same validation as the real reader. Text can be scripted to
    simulate recognition failures.
    """

    def __init__(self, axis, config: Optional[SensorConfig] = None):
        """
        Initialize mock OCR reader.

        Args:
            axis: SimulatedAxis providing the displayed value
            config: Sensor configuration (decimals, min confidence)
        """
        # Don't call super().__init__() - no capture/OCR backends needed
        SensorInterface.__init__(self)
        self.config = config or DEFAULT_SENSOR_CONFIG
        self.axis = axis
        self._last_status = SensorStatus.OK
        self._scripted: Deque[Tuple[str, float]] = deque()
        self.regions = []
        self._is_initialized = True

    def __repr__(self):
        return f"MockOCRReader(axis={self.axis!r}, reads={self._read_count})"

    def script_text(self, text: str, confidence: float = 95.0) -> None:
        """Queue recognized text (and confidence) to return instead of the axis value."""
        self._scripted.append((text, confidence))

    def read(self, region: Region) -> float:
        self.regions.append(region)
        if self._scripted:
            text, confidence = self._scripted.popleft()
            logger.debug(f"[MOCK] scripted OCR text {text!r} (conf {confidence:.1f})")
        else:
            text = f"{self.axis.reading():.{self.config.decimals}f}"
            confidence = 95.0
        value = self._accept(text, confidence)
        logger.debug(f"[MOCK] read #{self._read_count}: {value:.{self.config.decimals}f}")
        return value

    def _cleanup(self) -> None:
        logger.debug("[MOCK] OCR reader cleanup completed")
