"""Tests for audio assembly."""

from __future__ import annotations

import os
import shutil
import subprocess

import pytest

from digest_to_podcast import audio as audio_mod
from digest_to_podcast.audio import AudioAssembler, AudioAssemblyError, format_duration, parse_duration
from digest_to_podcast.models import AudioSegment


HAS_FFMPEG = shutil.which("ffmpeg") is not None


def test_zero_segments_returns_empty():
    assert AudioAssembler().concat([]) == b""


def test_single_segment_passes_through_without_ffmpeg(tmp_path):
    assembler = AudioAssembler(ffmpeg_path=str(tmp_path / "missing-ffmpeg"))
    assert assembler.concat([AudioSegment(index=1, data=b"abc")]) == b"abc"


def test_temp_files_removed_when_ffmpeg_fails(tmp_path, monkeypatch):
    seen = {}

    def fake_run(cmd, **kwargs):
        manifest = cmd[cmd.index("-i") + 1]
        seen["dir"] = os.path.dirname(manifest)
        with open(manifest, encoding="utf-8") as f:
            seen["manifest"] = f.read()
        return subprocess.CompletedProcess(cmd, 1, stdout="", stderr="bad input")

    monkeypatch.setattr(audio_mod.subprocess, "run", fake_run)
    assembler = AudioAssembler(temp_dir=str(tmp_path))
    segments = [AudioSegment(index=2, data=b"two"), AudioSegment(index=1, data=b"one")]

    with pytest.raises(AudioAssemblyError, match="bad input"):
        assembler.concat(segments)

    assert not os.path.exists(seen["dir"])
    assert os.listdir(tmp_path) == []
    lines = seen["manifest"].splitlines()
    assert lines[0].endswith("chunk_0000.mp3'")
    assert lines[1].endswith("chunk_0001.mp3'")


def test_concat_orders_segments_by_index(tmp_path, monkeypatch):
    def fake_run(cmd, **kwargs):
        manifest = cmd[cmd.index("-i") + 1]
        out_path = cmd[-1]
        parts = []
        with open(manifest, encoding="utf-8") as f:
            for line in f:
                path = line.strip()[len("file '"):-1]
                with open(path, "rb") as part:
                    parts.append(part.read())
        with open(out_path, "wb") as out:
            out.write(b"|".join(parts))
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    monkeypatch.setattr(audio_mod.subprocess, "run", fake_run)
    assembler = AudioAssembler(temp_dir=str(tmp_path))
    data = assembler.concat(
        [AudioSegment(index=3, data=b"c"), AudioSegment(index=1, data=b"a"), AudioSegment(index=2, data=b"b")]
    )
    assert data == b"a|b|c"
    assert os.listdir(tmp_path) == []


def test_missing_ffmpeg_binary_raises(tmp_path):
    assembler = AudioAssembler(ffmpeg_path=str(tmp_path / "no-such-ffmpeg"))
    with pytest.raises(AudioAssemblyError, match="not found"):
        assembler.concat([AudioSegment(index=1, data=b"a"), AudioSegment(index=2, data=b"b")])


def test_duration_formatting():
    assert format_duration(0) == "00:00"
    assert format_duration(125.4) == "02:05"
    assert parse_duration("02:05") == 125
    assert parse_duration("01:00:01") == 3601
    assert parse_duration("42") == 42
    assert parse_duration("") == 0


def _make_tone(path: str, seconds: int) -> None:
    subprocess.run(
        ["ffmpeg", "-hide_banner", "-loglevel", "error", "-y", "-f", "lavfi",
         "-i", f"sine=frequency=440:duration={seconds}", "-c:a", "libmp3lame", path],
        check=True,
    )


@pytest.mark.skipif(not HAS_FFMPEG, reason="ffmpeg not installed")
def test_real_concat_sums_durations(tmp_path):
    segs = []
    for i, secs in enumerate((1, 2), start=1):
        p = str(tmp_path / f"seg{i}.mp3")
        _make_tone(p, secs)
        with open(p, "rb") as f:
            segs.append(AudioSegment(index=i, data=f.read()))

    data = AudioAssembler().concat(segs)
    out = tmp_path / "joined.mp3"
    out.write_bytes(data)
    assert abs(audio_mod.get_audio_duration(str(out)) - 3.0) < 0.3


@pytest.mark.skipif(not HAS_FFMPEG, reason="ffmpeg not installed")
def test_write_episode_audio_without_artwork_tags_file(tmp_path):
    src = str(tmp_path / "tone.mp3")
    _make_tone(src, 1)
    with open(src, "rb") as f:
        data = f.read()

    out = str(tmp_path / "out" / "ep.mp3")
    AudioAssembler().write_episode_audio(
        data, out, title="Episode", artist="Host", artwork_path=str(tmp_path / "missing.png")
    )

    from mutagen.easyid3 import EasyID3

    tags = EasyID3(out)
    assert tags["title"] == ["Episode"]
    assert tags["artist"] == ["Host"]


def _fake_embed(returncode: int, seen: dict):
    def fake_run(cmd, **kwargs):
        plain = cmd[cmd.index("-i") + 1]
        seen["dir"] = os.path.dirname(plain)
        seen["cmd"] = cmd
        if returncode == 0:
            shutil.copyfile(plain, cmd[-1])
        return subprocess.CompletedProcess(cmd, returncode, stdout="", stderr="no png encoder")

    return fake_run


def test_write_episode_audio_moves_embedded_file_into_place(tmp_path, monkeypatch):
    from mutagen.id3 import ID3

    seen = {}
    monkeypatch.setattr(audio_mod.subprocess, "run", _fake_embed(0, seen))
    artwork = tmp_path / "cover.png"
    artwork.write_bytes(b"png")
    work = tmp_path / "work"
    out = str(tmp_path / "out" / "ep.mp3")

    AudioAssembler(temp_dir=str(work)).write_episode_audio(
        b"audio-bytes", out, title="Episode", artist="Host", artwork_path=str(artwork), link="https://pod.example.com"
    )

    assert os.path.exists(out)
    assert str(artwork) in seen["cmd"]
    assert "title=Episode" in seen["cmd"]
    assert not os.path.exists(seen["dir"])
    assert os.listdir(work) == []
    assert ID3(out).getall("WOAF")[0].url == "https://pod.example.com"


def test_write_episode_audio_falls_back_when_embedding_fails(tmp_path, monkeypatch):
    from mutagen.easyid3 import EasyID3
    from mutagen.id3 import ID3

    seen = {}
    monkeypatch.setattr(audio_mod.subprocess, "run", _fake_embed(1, seen))
    artwork = tmp_path / "cover.png"
    artwork.write_bytes(b"png")
    work = tmp_path / "work"
    out = str(tmp_path / "ep.mp3")

    AudioAssembler(temp_dir=str(work)).write_episode_audio(
        b"audio-bytes", out, title="Episode", artwork_path=str(artwork), link="https://pod.example.com"
    )

    assert os.path.exists(out)
    with open(out, "rb") as f:
        assert f.read().endswith(b"audio-bytes")
    assert EasyID3(out)["title"] == ["Episode"]
    assert ID3(out).getall("WOAF")[0].url == "https://pod.example.com"
    assert os.listdir(work) == []
