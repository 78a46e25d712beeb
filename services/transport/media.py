"""
Media helpers for generation payloads.

- Center-crop reference images to the video aspect ratio (Pillow)
- Wrap raw PCM speech output into a WAV container
"""

import io
import logging
import wave
from dataclasses import dataclass

from google.genai import types
from PIL import Image

logger = logging.getLogger(__name__)


@dataclass
class MediaInput:
    """Raw image bytes passed to multimodal, compose and video calls."""
    data: bytes
    mime_type: str = "image/png"

    def to_part(self) -> types.Part:
        return types.Part.from_bytes(data=self.data, mime_type=self.mime_type)


# Aspect ratios the reference image is cropped to before upload
CROPPABLE_ASPECT_RATIOS = {
    "16:9": (16, 9),
    "9:16": (9, 16),
}

_PORTRAIT_RATIOS = ("9:16", "3:4")


def aspect_ratio_class(aspect_ratio: str) -> str:
    """Map a requested ratio to the video service's landscape/portrait class."""
    return "portrait" if aspect_ratio in _PORTRAIT_RATIOS else "landscape"


def crop_image_to_aspect_ratio(image_bytes: bytes, aspect_ratio: str) -> bytes:
    """
    Center-crop an encoded image to the given aspect ratio.

    Returns the cropped image re-encoded in its original format.
    Raises ValueError for ratios that are not croppable and for
    undecodable input.
    """
    if aspect_ratio not in CROPPABLE_ASPECT_RATIOS:
        raise ValueError(f"Unsupported crop aspect ratio: {aspect_ratio}")
    ratio_w, ratio_h = CROPPABLE_ASPECT_RATIOS[aspect_ratio]

    try:
        img = Image.open(io.BytesIO(image_bytes))
        img.load()
    except (OSError, Image.DecompressionBombError) as e:
        raise ValueError(f"Could not decode reference image: {e}") from e

    image_format = img.format or "PNG"
    width, height = img.size
    target = ratio_w / ratio_h

    if width / height > target:
        new_width = int(round(height * target))
        left = (width - new_width) // 2
        box = (left, 0, left + new_width, height)
    else:
        new_height = int(round(width / target))
        top = (height - new_height) // 2
        box = (0, top, width, top + new_height)

    cropped = img.crop(box)
    if image_format == "JPEG" and cropped.mode not in ("RGB", "L"):
        cropped = cropped.convert("RGB")

    buffer = io.BytesIO()
    cropped.save(buffer, format=image_format)
    logger.debug(f"Cropped reference image {width}x{height} -> {cropped.size[0]}x{cropped.size[1]}")
    return buffer.getvalue()


def create_wav_bytes(
    pcm_data: bytes,
    sample_rate: int = 24000,
    channels: int = 1,
    bits_per_sample: int = 16,
) -> bytes:
    """Wrap raw little-endian PCM samples in a WAV header."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav_file:
        wav_file.setnchannels(channels)
        wav_file.setsampwidth(bits_per_sample // 8)
        wav_file.setframerate(sample_rate)
        wav_file.writeframes(pcm_data)
    return buffer.getvalue()
