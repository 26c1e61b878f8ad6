import asyncio
import os
import tempfile
from pathlib import Path

import pytest

# Settings are read at import time; point them at a throwaway SQLite DB + storage dir.
_TEST_ROOT = Path(tempfile.mkdtemp(prefix="mixdown-tests-"))
os.environ["DATABASE_URL_ASYNC"] = f"sqlite+aiosqlite:///{_TEST_ROOT / 'mixdown.db'}"
os.environ["STORAGE_DIR"] = str(_TEST_ROOT / "storage")

from fastapi import Depends  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from mixdown.analyzers.track_probe import TrackInfo  # noqa: E402
from mixdown.core import get_db  # noqa: E402
from mixdown.core.db import engine  # noqa: E402
from mixdown.core.errors import UnreadableTrackError  # noqa: E402
from mixdown.models import Base  # noqa: E402
from mixdown.renderers.mix_renderer import OutputSpec, RenderedArtifact, RenderRequest  # noqa: E402
from mixdown.services.mix_service import MixService  # noqa: E402


def fake_audio(duration_s: float) -> bytes:
    """Stand-in audio payload understood by FakeProbe."""
    return f"duration={duration_s:.3f}".encode()


class FakeProbe:
    """Reads the duration written by fake_audio(); anything else is unreadable."""

    def __init__(self):
        self.calls: list[tuple[str, str | None]] = []

    async def probe(self, path: str, *, track: str | None = None) -> TrackInfo:
        self.calls.append((path, track))
        p = Path(path)
        name = track or p.name
        if not p.is_file():
            raise UnreadableTrackError(name, "file not found")
        text = p.read_bytes().decode("utf-8", errors="replace")
        if not text.startswith("duration="):
            raise UnreadableTrackError(name, "Invalid data found when processing input")
        return TrackInfo(path=path, duration_s=float(text.split("=", 1)[1]))


class FakeRenderer:
    """Writes fake_audio() payloads instead of running ffmpeg."""

    def __init__(
        self,
        *,
        extra_s: float = 0.0,
        error: Exception | None = None,
        trim_error: Exception | None = None,
    ):
        self.extra_s = extra_s
        self.error = error
        self.trim_error = trim_error
        self.requests: list[RenderRequest] = []
        self.trims: list[tuple[str, str, float]] = []

    async def render(self, request: RenderRequest) -> RenderedArtifact:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        duration = (request.total_duration_s or 0.0) + self.extra_s
        Path(request.output_path).write_bytes(fake_audio(duration))
        return RenderedArtifact(
            path=request.output_path,
            mime=request.output_spec.mime,
            duration_s=duration,
            elapsed_s=0.0,
        )

    async def trim(self, src_path: str, dst_path: str, duration_s: float, output_spec: OutputSpec) -> str:
        self.trims.append((src_path, dst_path, duration_s))
        if self.trim_error is not None:
            # leave a partial file behind, as a crashed encoder would
            Path(dst_path).write_bytes(b"partial")
            raise self.trim_error
        Path(dst_path).write_bytes(fake_audio(duration_s))
        return dst_path


@pytest.fixture(scope="session")
def database():
    async def _create():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await engine.dispose()

    asyncio.run(_create())
    yield


@pytest.fixture
def probe():
    return FakeProbe()


@pytest.fixture
def renderer():
    return FakeRenderer()


@pytest.fixture
def client(database, probe, renderer):
    from mixdown.api.v1.mixes import get_mix_service
    from mixdown.main import app

    def _service(db: AsyncSession = Depends(get_db)) -> MixService:
        return MixService(db, renderer=renderer, probe=probe)

    app.dependency_overrides[get_mix_service] = _service
    with TestClient(app) as c:
        yield c
        # pooled aiosqlite connections belong to this client's event loop
        c.portal.call(engine.dispose)
    app.dependency_overrides.clear()


@pytest.fixture
def storage_dir() -> Path:
    return Path(os.environ["STORAGE_DIR"])
