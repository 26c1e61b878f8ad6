from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import anyio
from fastapi import UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from mixdown.analyzers.track_probe import FfprobeTrackProbe, TrackInfo, TrackProbe
from mixdown.core.config import settings
from mixdown.core.errors import (
    ArtifactNotFoundError,
    EmptyPlacementListError,
    ReferenceNotFoundError,
    UnreadableTrackError,
)
from mixdown.planning import (
    OutputDurationPolicy,
    PlacementPolicy,
    compile_plan,
    parse_clip_metadata,
    reconcile_on_retrieval,
    resolve_output_duration,
    resolve_placements,
)
from mixdown.renderers.mix_renderer import FfmpegMixRenderer, MixRenderer, OutputSpec, RenderRequest
from mixdown.repos.audio_asset_repo import AudioAssetRepo
from mixdown.schemas.mix import MixAssetOut, MixOut, PlacementOut
from mixdown.services.storage_service import StorageService


@dataclass(frozen=True)
class DownloadTarget:
    """
    Either `path` (canonical artifact, served as is) or `content`
    (a trimmed copy whose temporary file is already gone).
    """
    filename: str
    mime: str
    path: Optional[str] = None
    content: Optional[bytes] = None


def download_name(upload_filename: Optional[str], ext: str) -> str:
    stem = Path(upload_filename).stem if upload_filename else ""
    return f"{stem or 'mix'}{ext}"


class MixService:
    def __init__(
        self,
        db: AsyncSession,
        *,
        storage: StorageService | None = None,
        renderer: MixRenderer | None = None,
        probe: TrackProbe | None = None,
    ):
        self.db = db
        self.assets = AudioAssetRepo(db)

        self.storage = storage or StorageService()
        self.renderer = renderer or FfmpegMixRenderer()
        self.probe = probe or FfprobeTrackProbe()
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    async def create_mix(
        self,
        *,
        main_audio: UploadFile,
        clip_audios: list[UploadFile],
        clip_metadata: Optional[str] = None,
        placement_mode: Optional[str] = None,
        seed: Optional[int] = None,
        duration_policy: Optional[str] = None,
        fixed_duration_s: Optional[float] = None,
    ) -> MixOut:
        # validate everything that doesn't need the files before touching storage
        metas = parse_clip_metadata(clip_metadata)
        if len(clip_audios) > settings.MAX_CLIP_TRACKS:
            raise ValueError(f"at most {settings.MAX_CLIP_TRACKS} clip tracks are allowed, got {len(clip_audios)}")
        if not clip_audios and settings.REQUIRE_CLIP_TRACKS:
            raise EmptyPlacementListError("upload one main track and at least one clip track")
        policy = PlacementPolicy.from_settings(mode=placement_mode, seed=seed)
        out_policy = OutputDurationPolicy.parse(duration_policy, fixed_duration_s)
        output_spec = OutputSpec.from_settings()

        # files written for this request; removed again if the transaction fails
        written: list[str] = []
        try:
            async with self.db.begin():
                # 1) persist uploads => audio_assets(kind=source)
                main_obj = await self.storage.save_upload(main_audio, kind="source")
                written.append(main_obj.abs_path)
                main_asset = await self.assets.create(
                    kind="source",
                    storage_url=main_obj.url,
                    mime=main_obj.mime,
                    filename=main_audio.filename,
                )
                clip_paths: list[str] = []
                for up in clip_audios:
                    stored = await self.storage.save_upload(up, kind="source")
                    written.append(stored.abs_path)
                    await self.assets.create(
                        kind="source",
                        storage_url=stored.url,
                        mime=stored.mime,
                        filename=up.filename,
                    )
                    clip_paths.append(stored.abs_path)

                # 2) probe; every track must be readable before planning
                main_info = await self.probe.probe(main_obj.abs_path, track="main_audio")
                for i, path in enumerate(clip_paths):
                    await self.probe.probe(path, track=f"clip_audios[{i}]")

                # 3) resolve placements + compile plan
                placements = resolve_placements(metas, len(clip_paths), main_info.duration_s, policy)
                plan = compile_plan(
                    main_info.duration_s,
                    placements,
                    out_policy,
                    require_clips=settings.REQUIRE_CLIP_TRACKS,
                    normalize=settings.MIX_NORMALIZE,
                )
                output_duration = resolve_output_duration(main_info.duration_s, placements, out_policy)
                self.logger.info(
                    "Mixing %d clips into %.3fs main track (%s, %s) -> %.3fs",
                    len(placements),
                    main_info.duration_s,
                    policy.mode,
                    out_policy.kind,
                    output_duration,
                )

                # 4) render => audio_assets(kind=mix)
                mix_obj = self.storage.reserve(kind="mix", mime=output_spec.mime, ext=output_spec.ext)
                written.append(mix_obj.abs_path)
                artifact = await self.renderer.render(RenderRequest(
                    main_path=main_obj.abs_path,
                    clip_paths=tuple(clip_paths),
                    plan=plan,
                    output_path=mix_obj.abs_path,
                    output_spec=output_spec,
                    total_duration_s=output_duration,
                ))
                filename = download_name(main_audio.filename, output_spec.ext)
                mix_asset = await self.assets.create(
                    kind="mix",
                    storage_url=mix_obj.url,
                    mime=artifact.mime,
                    filename=filename,
                )
        except BaseException:
            for path in written:
                Path(path).unlink(missing_ok=True)
            raise

        return MixOut(
            mix_id=str(mix_asset.id),
            main_asset_id=str(main_asset.id),
            audio_url=mix_obj.url,
            download_url=f"/v1/mixes/{mix_asset.id}/download?reference_id={main_asset.id}",
            filename=filename,
            duration_s=output_duration,
            placement_mode=policy.mode,
            duration_policy=out_policy.kind,
            placements=[PlacementOut(**p.to_dict()) for p in placements],
        )

    async def get_mix(self, mix_id: uuid.UUID) -> MixAssetOut:
        asset = await self.assets.get(mix_id, kind="mix")
        if asset is None:
            raise ArtifactNotFoundError("mix not found")
        return MixAssetOut(
            mix_id=str(asset.id),
            audio_url=asset.storage_url,
            mime=asset.mime,
            filename=asset.filename,
        )

    async def prepare_download(
        self,
        mix_id: uuid.UUID,
        reference_id: Optional[uuid.UUID] = None,
    ) -> DownloadTarget:
        """
        Return the canonical artifact, or a copy trimmed to the reference track's length
        when the artifact is longer. The canonical file is never modified.
        """
        mix_asset = await self.assets.get(mix_id, kind="mix")
        if mix_asset is None:
            raise ArtifactNotFoundError("mix artifact not found")
        artifact_path = self.storage.path_for_url(mix_asset.storage_url)
        if not artifact_path.is_file():
            raise ArtifactNotFoundError("mix artifact not found")

        filename = mix_asset.filename or artifact_path.name
        canonical = DownloadTarget(filename=filename, mime=mix_asset.mime, path=str(artifact_path))
        if reference_id is None:
            return canonical

        ref_asset = await self.assets.get(reference_id, kind="source")
        if ref_asset is None:
            raise ReferenceNotFoundError("reference track not found")
        ref_path = self.storage.path_for_url(ref_asset.storage_url)

        artifact_info = await self._probe_or_raise(artifact_path, "mix artifact", ArtifactNotFoundError)
        ref_info = await self._probe_or_raise(ref_path, "reference track", ReferenceNotFoundError)

        decision = reconcile_on_retrieval(
            artifact_info.duration_s,
            ref_info.duration_s,
            tolerance_s=settings.RETRIEVAL_TOLERANCE_S,
        )
        if not decision.needs_trim:
            return canonical

        tmp_obj = self.storage.reserve(kind="tmp", mime=mix_asset.mime, ext=artifact_path.suffix)
        tmp_path = Path(tmp_obj.abs_path)
        try:
            await self.renderer.trim(
                str(artifact_path),
                str(tmp_path),
                decision.duration_s,
                OutputSpec.from_settings(),
            )
            content = await anyio.Path(tmp_path).read_bytes()
        finally:
            tmp_path.unlink(missing_ok=True)

        self.logger.info("Serving %s trimmed to %.3fs (%d bytes)", mix_id, decision.duration_s, len(content))
        return DownloadTarget(filename=filename, mime=mix_asset.mime, content=content)

    async def _probe_or_raise(self, path: Path, what: str, error_cls: type[KeyError]) -> TrackInfo:
        try:
            return await self.probe.probe(str(path), track=what)
        except UnreadableTrackError as e:
            raise error_cls(f"{what} could not be probed: {e.diagnostic or 'unreadable'}") from e
