"""Image processing service - contrast stretch, RGBA expansion, encoding.

Pure Python (PIL + numpy), no USB or GUI dependencies.
"""
from __future__ import annotations

import io
import logging
from typing import Any

import numpy as np
from PIL import Image as PILImage

from ..core.errors import DegenerateImage, UnsupportedFormat
from ..core.models import EncodedImage

log = logging.getLogger(__name__)

# format name -> (PIL format, media type)
FORMATS: dict = {
    'png':  ('PNG', 'image/png'),
    'bmp':  ('BMP', 'image/bmp'),
    'tiff': ('TIFF', 'image/tiff'),
    'jpeg': ('JPEG', 'image/jpeg'),
    'jpg':  ('JPEG', 'image/jpeg'),
}


class ImageService:
    """Stateless image processing utilities."""

    @staticmethod
    def normalize(samples: Any) -> bytes:
        """Min-max contrast stretch to the full 0-255 range.

        Integer (floor) arithmetic: [10, 20, 30] -> [0, 127, 255].

        Raises:
            DegenerateImage: Every sample has the same value (blank sensor).
        """
        arr = np.frombuffer(bytes(samples), dtype=np.uint8)
        if arr.size == 0:
            raise DegenerateImage(0)
        lo = int(arr.min())
        hi = int(arr.max())
        if hi == lo:
            raise DegenerateImage(lo)

        wide = arr.astype(np.uint32)
        stretched = (wide - lo) * 255 // (hi - lo)
        log.debug("normalize: range %d..%d stretched to 0..255", lo, hi)
        return stretched.astype(np.uint8).tobytes()

    @staticmethod
    def to_raster(samples: Any, width: int, height: int) -> bytes:
        """Expand single-channel samples to RGBA (R=G=B=sample, A=255)."""
        arr = np.frombuffer(bytes(samples), dtype=np.uint8)
        if arr.size != width * height:
            raise ValueError(
                f"Expected {width}x{height}={width * height} samples, got {arr.size}"
            )
        rgba = np.empty((arr.size, 4), dtype=np.uint8)
        rgba[:, 0] = arr
        rgba[:, 1] = arr
        rgba[:, 2] = arr
        rgba[:, 3] = 255
        return rgba.tobytes()

    @staticmethod
    def encode(raster: bytes, width: int, height: int, fmt: str) -> EncodedImage:
        """Serialize an RGBA raster to an image container.

        JPEG has no alpha channel, so the raster is flattened to RGB first.

        Raises:
            UnsupportedFormat: *fmt* is not one of FORMATS.
        """
        key = fmt.lower()
        if key not in FORMATS:
            raise UnsupportedFormat(fmt, sorted(FORMATS))
        pil_format, media_type = FORMATS[key]

        img = PILImage.frombytes('RGBA', (width, height), bytes(raster))
        if pil_format == 'JPEG':
            img = img.convert('RGB')

        out = io.BytesIO()
        img.save(out, format=pil_format)
        data = out.getvalue()
        log.debug("encode: %dx%d -> %s (%d bytes)", width, height, key, len(data))
        return EncodedImage(
            data=data,
            media_type=media_type,
            width=width,
            height=height,
            format='jpeg' if key == 'jpg' else key,
        )

    @staticmethod
    def supports(fmt: str) -> bool:
        return fmt.lower() in FORMATS

    @classmethod
    def process(cls, samples: bytes, width: int, height: int,
                enhance: bool = True, fmt: str = 'png') -> EncodedImage:
        """Raw sensor samples -> encoded image (the full capture pipeline)."""
        if enhance:
            samples = cls.normalize(samples)
        raster = cls.to_raster(samples, width, height)
        return cls.encode(raster, width, height, fmt)
