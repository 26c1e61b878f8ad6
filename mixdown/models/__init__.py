from mixdown.models.base import Base
from mixdown.models.audio_asset import AudioAsset

__all__ = [
    "Base",
    "AudioAsset",
]
