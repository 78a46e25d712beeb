"""
Transport Service

Boundary to the remote generation endpoints:
- GenAIClient: text, chat, image, speech and minimal video probes (google-genai)
- VeoClient: video proxy submit / upload / status / download (httpx)
- media: image cropping and WAV wrapping
"""

from .genai_client import (
    ChatSession,
    GenAIClient,
    blocked_categories,
    extract_inline_data,
    extract_text,
    response_parts,
    translate_errors,
    usage_token_count,
)
from .media import (
    CROPPABLE_ASPECT_RATIOS,
    MediaInput,
    aspect_ratio_class,
    create_wav_bytes,
    crop_image_to_aspect_ratio,
)
from .veo_client import VeoClient

__all__ = [
    "ChatSession",
    "GenAIClient",
    "blocked_categories",
    "extract_inline_data",
    "extract_text",
    "response_parts",
    "translate_errors",
    "usage_token_count",
    "CROPPABLE_ASPECT_RATIOS",
    "MediaInput",
    "aspect_ratio_class",
    "create_wav_bytes",
    "crop_image_to_aspect_ratio",
    "VeoClient",
]
