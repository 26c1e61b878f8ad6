from __future__ import annotations

import uuid
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mixdown.models import AudioAsset


class AudioAssetRepo:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        *,
        kind: str,
        storage_url: str,
        mime: str,
        filename: str | None = None,
    ) -> AudioAsset:
        asset = AudioAsset(
            kind=kind,
            storage_url=storage_url,
            mime=mime,
            filename=filename,
        )
        self.db.add(asset)
        await self.db.flush()  # assign asset.id
        return asset

    async def get(self, asset_id: uuid.UUID, *, kind: str | None = None) -> AudioAsset | None:
        stmt = select(AudioAsset).where(AudioAsset.id == asset_id)
        if kind is not None:
            stmt = stmt.where(AudioAsset.kind == kind)
        res = await self.db.execute(stmt)
        return res.scalar_one_or_none()
