"""
Perceptual image fingerprinting.

The fingerprint is a quantised grayscale thumbnail: the image is downscaled to
a small square, reduced to luma, each cell quantised to a few bits and written
as one hex digit in raster order. Identical pixels after downscaling give the
same fingerprint regardless of container or compression.
"""
import logging
from typing import Optional

import cv2
import numpy as np
from PIL import Image

from models.config import HashingConfig
from models.errors import HashUnavailable, ImageLoadError
from services.image_loader import ImageSource, load_image


class PerceptualHasher:
    """
    Computes content fingerprints for duplicate detection.
    """

    def __init__(self, config: Optional[HashingConfig] = None):
        """
        Initialize the hasher.

        Args:
            config: Hashing configuration (size, quantisation bits, decode timeout).
        """
        self.logger = logging.getLogger(__name__)
        self.config = config or HashingConfig()

    def _compute(self, image: Image.Image) -> str:
        """
        1. Resize to hash_size x hash_size with area interpolation.
        2. Convert to grayscale (luma).
        3. Quantise each value to quantize_bits and emit one hex digit per cell.
        """
        size = self.config.hash_size
        shift = 8 - self.config.quantize_bits
        if image.mode != "RGB":
            image = image.convert("RGB")
        arr = np.asarray(image, dtype=np.uint8)
        small = cv2.resize(arr, (size, size), interpolation=cv2.INTER_AREA)
        gray = cv2.cvtColor(small, cv2.COLOR_RGB2GRAY)
        levels = (gray >> shift).flatten()
        width = (self.config.quantize_bits + 3) // 4
        return "".join(format(int(v), f"0{width}x") for v in levels)

    def hash(self, source: ImageSource) -> str:
        """
        Compute the fingerprint of an image source.

        Raises:
            HashUnavailable: decode error or decode timeout.
        """
        try:
            image = load_image(source, timeout=self.config.decode_timeout)
        except ImageLoadError as e:
            raise HashUnavailable(str(e)) from e
        try:
            fingerprint = self._compute(image)
        except (cv2.error, ValueError, OSError) as e:
            raise HashUnavailable(f"Fingerprint computation failed: {e}") from e
        self.logger.debug(f"Fingerprint computed: {fingerprint[:16]}...")
        return fingerprint


def fingerprint_distance(a: str, b: str) -> int:
    """Number of cells whose quantised values differ. Fingerprints of different length are maximally distant."""
    if len(a) != len(b):
        return max(len(a), len(b))
    return sum(1 for x, y in zip(a, b) if x != y)
