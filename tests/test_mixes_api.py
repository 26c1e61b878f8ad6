import json
import uuid
from pathlib import Path

from mixdown.api.v1.mixes import content_disposition
from mixdown.core.errors import EncodeError
from mixdown.planning import Delay, Mix, Source, Trim

from conftest import fake_audio


def _files(main_s=30.0, clips=(5.0, 6.0), main_bytes=None, main_name="main.mp3"):
    files = [("main_audio", (main_name, main_bytes or fake_audio(main_s), "audio/mpeg"))]
    for i, d in enumerate(clips):
        files.append(("clip_audios", (f"clip{i}.mp3", fake_audio(d), "audio/mpeg")))
    return files


METADATA = json.dumps([
    {"timestamp": 5, "duration": 3, "volume": 0.5},
    {"timestamp": 10, "duration": 4, "volume": 0.4},
])


def _tmp_files(storage_dir):
    tmp_root = storage_dir / "tmp"
    if not tmp_root.exists():
        return []
    return [p for p in tmp_root.rglob("*") if p.is_file()]


def _stored_files(storage_dir):
    return {p for p in storage_dir.rglob("*") if p.is_file()}


def test_create_mix_renders_main_plus_clips(client, renderer, probe):
    r = client.post("/v1/mixes", files=_files(), data={"clip_metadata": METADATA})
    assert r.status_code == 200, r.text
    body = r.json()

    assert body["filename"] == "main.aac"
    assert body["duration_s"] == 30.0
    assert body["placement_mode"] == "explicit"
    assert body["duration_policy"] == "match_main"
    assert [p["start_offset_s"] for p in body["placements"]] == [5.0, 10.0]
    assert body["download_url"] == f"/v1/mixes/{body['mix_id']}/download?reference_id={body['main_asset_id']}"

    [request] = renderer.requests
    assert len(request.input_paths) == 3
    assert request.total_duration_s == 30.0
    assert request.plan.ops[0] == Trim(Source(1), 5.0, 8.0, "clip0_trim")
    assert Delay("clip1_gain", 10000, "clip1_delay") in request.plan.ops
    assert request.plan.ops[-2] == Mix((Source(0), "clip0_delay", "clip1_delay"), "first", "mixed")

    assert [track for _, track in probe.calls] == ["main_audio", "clip_audios[0]", "clip_audios[1]"]

    r = client.get(f"/v1/mixes/{body['mix_id']}")
    assert r.status_code == 200
    assert r.json()["filename"] == "main.aac"


def test_malformed_metadata_is_rejected_before_rendering(client, renderer):
    r = client.post("/v1/mixes", files=_files(), data={"clip_metadata": "{not json"})
    assert r.status_code == 400
    assert renderer.requests == []


def test_clip_tracks_are_required(client, renderer):
    r = client.post("/v1/mixes", files=_files(clips=()))
    assert r.status_code == 400
    assert renderer.requests == []


def test_too_many_clip_tracks(client, renderer):
    r = client.post("/v1/mixes", files=_files(clips=[1.0] * 11))
    assert r.status_code == 400
    assert "at most 10" in r.json()["detail"]


def test_unreadable_main_track_names_the_track(client, renderer):
    r = client.post("/v1/mixes", files=_files(main_bytes=b"definitely not audio"))
    assert r.status_code == 400
    assert "main_audio" in r.json()["detail"]
    assert renderer.requests == []


def test_fixed_policy_requires_seconds(client):
    r = client.post("/v1/mixes", files=_files(), data={"duration_policy": "fixed"})
    assert r.status_code == 400


def test_fixed_policy_sets_output_length(client, renderer):
    r = client.post(
        "/v1/mixes",
        files=_files(),
        data={"duration_policy": "fixed", "fixed_duration_s": "12.5"},
    )
    assert r.status_code == 200, r.text
    assert r.json()["duration_s"] == 12.5
    assert renderer.requests[0].total_duration_s == 12.5


def test_encoder_failure_is_a_server_error(client, renderer):
    renderer.error = EncodeError("ffmpeg exited with code 1", "Conversion failed!")
    r = client.post("/v1/mixes", files=_files(), data={"clip_metadata": METADATA})
    assert r.status_code == 500
    assert "Conversion failed!" in r.json()["detail"]


def test_seeded_randomized_placement_is_reproducible(client):
    data = {"placement_mode": "randomized", "seed": "7"}
    first = client.post("/v1/mixes", files=_files(), data=data)
    second = client.post("/v1/mixes", files=_files(), data=data)
    assert first.status_code == 200, first.text
    assert first.json()["placements"] == second.json()["placements"]
    assert all(p["span_s"] == 4.0 and p["gain"] == 0.4 for p in first.json()["placements"])


def test_download_without_reference_serves_canonical_artifact(client):
    body = client.post("/v1/mixes", files=_files(), data={"clip_metadata": METADATA}).json()

    r = client.get(f"/v1/mixes/{body['mix_id']}/download")
    assert r.status_code == 200
    assert r.content == fake_audio(30.0)
    assert r.headers["content-type"].startswith("audio/aac")
    assert "main.aac" in r.headers["content-disposition"]


def test_download_trims_artifact_longer_than_reference(client, renderer, storage_dir):
    renderer.extra_s = 2.0
    body = client.post("/v1/mixes", files=_files(), data={"clip_metadata": METADATA}).json()

    r = client.get(body["download_url"])
    assert r.status_code == 200
    assert r.content == fake_audio(30.0)
    assert "attachment" in r.headers["content-disposition"]
    [(_, _, trimmed_to)] = renderer.trims
    assert trimmed_to == 30.0
    assert _tmp_files(storage_dir) == []

    # canonical artifact is untouched
    r = client.get(f"/v1/mixes/{body['mix_id']}/download")
    assert r.content == fake_audio(32.0)


def test_download_within_tolerance_is_not_trimmed(client, renderer):
    renderer.extra_s = 0.005
    body = client.post("/v1/mixes", files=_files(), data={"clip_metadata": METADATA}).json()

    r = client.get(body["download_url"])
    assert r.status_code == 200
    assert renderer.trims == []


def test_download_unknown_mix(client):
    r = client.get(f"/v1/mixes/{uuid.uuid4()}/download")
    assert r.status_code == 404
    assert r.json()["detail"] == "mix artifact not found"


def test_download_unknown_reference(client):
    body = client.post("/v1/mixes", files=_files(), data={"clip_metadata": METADATA}).json()
    r = client.get(f"/v1/mixes/{body['mix_id']}/download", params={"reference_id": str(uuid.uuid4())})
    assert r.status_code == 404
    assert r.json()["detail"] == "reference track not found"


def test_get_unknown_mix(client):
    r = client.get(f"/v1/mixes/{uuid.uuid4()}")
    assert r.status_code == 404


def test_trimmed_download_keeps_non_ascii_filename(client, renderer):
    renderer.extra_s = 2.0
    files = _files(main_name="노래.mp3", clips=(5.0,))
    body = client.post("/v1/mixes", files=files).json()
    assert body["filename"] == "노래.aac"

    r = client.get(body["download_url"])
    assert r.status_code == 200
    assert r.content == fake_audio(30.0)
    disposition = r.headers["content-disposition"]
    assert disposition.startswith("attachment;")
    assert "filename*=utf-8''%EB%85%B8%EB%9E%98.aac" in disposition
    assert 'filename="mix.aac"' in disposition


def test_content_disposition_forms():
    assert content_disposition("main.aac") == 'attachment; filename="main.aac"'
    assert content_disposition('my "best" song.aac') == (
        "attachment; filename=\"my best song.aac\"; filename*=utf-8''my%20%22best%22%20song.aac"
    )
    assert content_disposition("노래.aac") == (
        "attachment; filename=\"mix.aac\"; filename*=utf-8''%EB%85%B8%EB%9E%98.aac"
    )


def test_failed_trim_leaves_no_temporary_copy(client, renderer, storage_dir):
    renderer.extra_s = 2.0
    renderer.trim_error = EncodeError("ffmpeg exited with code 1", "Conversion failed!")
    body = client.post("/v1/mixes", files=_files(), data={"clip_metadata": METADATA}).json()

    r = client.get(body["download_url"])
    assert r.status_code == 500
    assert "Conversion failed!" in r.json()["detail"]
    assert len(renderer.trims) == 1
    assert _tmp_files(storage_dir) == []


def test_unreadable_artifact_is_reported_as_missing_mix(client, renderer):
    body = client.post("/v1/mixes", files=_files(), data={"clip_metadata": METADATA}).json()
    Path(renderer.requests[0].output_path).write_bytes(b"truncated garbage")

    r = client.get(body["download_url"])
    assert r.status_code == 404
    assert r.json()["detail"].startswith("mix artifact could not be probed")
    assert renderer.trims == []


def test_unreadable_reference_is_reported_as_missing_reference(client, renderer):
    body = client.post("/v1/mixes", files=_files(), data={"clip_metadata": METADATA}).json()
    Path(renderer.requests[0].main_path).write_bytes(b"truncated garbage")

    r = client.get(body["download_url"])
    assert r.status_code == 404
    assert r.json()["detail"].startswith("reference track could not be probed")
    assert renderer.trims == []


def test_failed_render_removes_stored_uploads(client, renderer, storage_dir):
    before = _stored_files(storage_dir)
    renderer.error = EncodeError("ffmpeg exited with code 1", "Conversion failed!")

    r = client.post("/v1/mixes", files=_files(), data={"clip_metadata": METADATA})
    assert r.status_code == 500
    assert _stored_files(storage_dir) == before


def test_unreadable_clip_removes_stored_uploads(client, renderer, storage_dir):
    before = _stored_files(storage_dir)
    files = _files(clips=(5.0,))
    files.append(("clip_audios", ("broken.mp3", b"not audio at all", "audio/mpeg")))

    r = client.post("/v1/mixes", files=files)
    assert r.status_code == 400
    assert "clip_audios[1]" in r.json()["detail"]
    assert _stored_files(storage_dir) == before
    assert renderer.requests == []
