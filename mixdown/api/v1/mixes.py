import uuid
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, UploadFile, File, Form
from fastapi.responses import FileResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from mixdown.core import get_db
from mixdown.schemas.mix import MixAssetOut, MixOut
from mixdown.services.mix_service import MixService
router = APIRouter()


def content_disposition(filename: str) -> str:
    # header values go out as latin-1; non-ascii names use the RFC 5987 form
    quoted = quote(filename)
    if quoted == filename:
        return f'attachment; filename="{filename}"'
    fallback = filename.encode("ascii", "ignore").decode().replace('"', "").replace("\\", "")
    if not fallback or fallback.startswith("."):
        fallback = f"mix{Path(filename).suffix}"
    return f"attachment; filename=\"{fallback}\"; filename*=utf-8''{quoted}"


def get_mix_service(db: AsyncSession = Depends(get_db)) -> MixService:
    return MixService(db)


@router.post("", response_model=MixOut)
async def create_mix(
    main_audio: UploadFile = File(...),
    clip_audios: Optional[list[UploadFile]] = File(None),
    clip_metadata: Optional[str] = Form(None),
    placement_mode: Optional[str] = Form(None),
    seed: Optional[int] = Form(None),
    duration_policy: Optional[str] = Form(None),
    fixed_duration_s: Optional[float] = Form(None),
    svc: MixService = Depends(get_mix_service),
):
    try:
        return await svc.create_mix(
            main_audio=main_audio,
            clip_audios=clip_audios or [],
            clip_metadata=clip_metadata,
            placement_mode=placement_mode,
            seed=seed,
            duration_policy=duration_policy,
            fixed_duration_s=fixed_duration_s,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RuntimeError as e:
        raise HTTPException(status_code=500, detail=f"error processing audio: {e}")

@router.get("/{mix_id}", response_model=MixAssetOut)
async def get_mix(
    mix_id: uuid.UUID,
    svc: MixService = Depends(get_mix_service),
) -> MixAssetOut:
    try:
        return await svc.get_mix(mix_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="mix not found")

@router.get("/{mix_id}/download")
async def download_mix(
    mix_id: uuid.UUID,
    reference_id: Optional[uuid.UUID] = None,
    svc: MixService = Depends(get_mix_service),
) -> Response:
    try:
        target = await svc.prepare_download(mix_id, reference_id)
    except KeyError as e:
        # artifact vs reference are reported with distinct details
        raise HTTPException(status_code=404, detail=str(e))
    except RuntimeError as e:
        raise HTTPException(status_code=500, detail=f"error processing audio file: {e}")

    if target.content is not None:
        return Response(
            content=target.content,
            media_type=target.mime,
            headers={"Content-Disposition": content_disposition(target.filename)},
        )
    return FileResponse(target.path, media_type=target.mime, filename=target.filename)
