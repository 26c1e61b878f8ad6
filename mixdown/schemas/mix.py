from pydantic import BaseModel
from typing import List, Optional

class PlacementOut(BaseModel):
    source_index: int
    start_offset_s: float
    span_s: float
    gain: float
    fade_out_s: float

class MixOut(BaseModel):
    mix_id: str
    main_asset_id: str
    audio_url: str
    download_url: str
    filename: str
    duration_s: float
    placement_mode: str
    duration_policy: str
    placements: List[PlacementOut]

class MixAssetOut(BaseModel):
    mix_id: str
    audio_url: str
    mime: str
    filename: Optional[str]
