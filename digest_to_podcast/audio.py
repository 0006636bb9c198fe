from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
from typing import List, Optional, Sequence

from mutagen.easyid3 import EasyID3
from mutagen.id3 import ID3, ID3NoHeaderError, WOAF
from mutagen.mp3 import MP3

from .models import AudioSegment


logger = logging.getLogger(__name__)


class AudioAssemblyError(RuntimeError):
    pass


def get_audio_duration(path: str) -> float:
    return float(MP3(path).info.length)


def format_duration(seconds: float) -> str:
    total = int(round(seconds))
    minutes, secs = divmod(total, 60)
    return f"{minutes:02d}:{secs:02d}"


def parse_duration(value: str) -> int:
    """Inverse of format_duration; also accepts HH:MM:SS and bare seconds."""
    parts = [p for p in str(value).strip().split(":") if p != ""]
    if not parts:
        return 0
    try:
        nums = [int(float(p)) for p in parts]
    except ValueError:
        return 0
    total = 0
    for n in nums:
        total = total * 60 + n
    return total


def write_id3_tags(path: str, title: str, artist: str = "", album: str = "", link: str = "") -> None:
    try:
        tags = EasyID3(path)
    except ID3NoHeaderError:
        tags = EasyID3()
        tags.save(path)
        tags = EasyID3(path)
    tags["title"] = title
    if artist:
        tags["artist"] = artist
    if album:
        tags["album"] = album
    tags.save()
    if link:
        add_link_frame(path, link)


def add_link_frame(path: str, link: str) -> None:
    try:
        id3 = ID3(path)
    except ID3NoHeaderError:
        id3 = ID3()
    id3.add(WOAF(url=link))
    id3.save(path, v2_version=3)


def _manifest_line(path: str) -> str:
    # concat demuxer quoting: close quote, escaped quote, reopen
    return "file '" + path.replace("'", "'\\''") + "'"


class AudioAssembler:
    """Joins synthesized MP3 segments into one correctly-timed file.

    Multi-segment joins go through ffmpeg's concat demuxer so frame and
    container boundaries (and the resulting duration header) stay valid.
    Every temporary file lives in a TemporaryDirectory scoped to the call.
    """

    def __init__(self, ffmpeg_path: str = "ffmpeg", temp_dir: Optional[str] = None) -> None:
        self.ffmpeg_path = ffmpeg_path
        self.temp_dir = temp_dir

    def _run_ffmpeg(self, args: List[str]) -> None:
        cmd = [self.ffmpeg_path, "-hide_banner", "-loglevel", "error", "-y", *args]
        try:
            proc = subprocess.run(cmd, check=False, capture_output=True, text=True)
        except FileNotFoundError as e:
            raise AudioAssemblyError(f"ffmpeg not found at '{self.ffmpeg_path}'") from e
        if proc.returncode != 0:
            raise AudioAssemblyError(
                f"ffmpeg exited with {proc.returncode}: {(proc.stderr or '')[-400:].strip()}"
            )

    def _tempdir(self) -> tempfile.TemporaryDirectory:
        if self.temp_dir:
            os.makedirs(self.temp_dir, exist_ok=True)
        return tempfile.TemporaryDirectory(prefix="assemble-", dir=self.temp_dir)

    def concat(self, segments: Sequence[AudioSegment]) -> bytes:
        if not segments:
            return b""
        if len(segments) == 1:
            return segments[0].data

        ordered = sorted(segments, key=lambda s: s.index)
        with self._tempdir() as tmpdir:
            tmpdir = os.path.abspath(tmpdir)
            parts: List[str] = []
            for pos, seg in enumerate(ordered):
                part_path = os.path.join(tmpdir, f"chunk_{pos:04d}.mp3")
                with open(part_path, "wb") as f:
                    f.write(seg.data)
                parts.append(part_path)

            manifest = os.path.join(tmpdir, "concat.txt")
            with open(manifest, "w", encoding="utf-8") as f:
                f.write("\n".join(_manifest_line(p) for p in parts) + "\n")

            out_path = os.path.join(tmpdir, "output.mp3")
            self._run_ffmpeg(["-f", "concat", "-safe", "0", "-i", manifest, "-c:a", "copy", out_path])
            with open(out_path, "rb") as f:
                data = f.read()

        logger.info("Concatenated audio segments", extra={"segments": len(ordered), "bytes": len(data)})
        return data

    def embed_artwork(
        self,
        mp3_path: str,
        artwork_path: str,
        out_path: str,
        title: str = "",
        artist: str = "",
        album: str = "",
    ) -> None:
        args = [
            "-i", mp3_path,
            "-i", artwork_path,
            "-map", "0:a",
            "-map", "1:v",
            "-c:a", "copy",
            "-c:v", "png",
            "-id3v2_version", "3",
            "-metadata:s:v", "title=Album cover",
            "-metadata:s:v", "comment=Cover (front)",
        ]
        for key, value in (("title", title), ("artist", artist), ("album", album)):
            if value:
                args += ["-metadata", f"{key}={value}"]
        self._run_ffmpeg(args + [out_path])

    def write_episode_audio(
        self,
        data: bytes,
        out_path: str,
        title: str,
        artist: str = "",
        album: str = "",
        artwork_path: Optional[str] = None,
        link: str = "",
    ) -> str:
        """Write assembled audio to `out_path`, embedding artwork when available."""
        out_dir = os.path.dirname(os.path.abspath(out_path))
        os.makedirs(out_dir, exist_ok=True)

        if artwork_path and os.path.exists(artwork_path):
            with self._tempdir() as tmpdir:
                plain = os.path.join(tmpdir, "plain.mp3")
                tagged = os.path.join(tmpdir, "tagged.mp3")
                with open(plain, "wb") as f:
                    f.write(data)
                try:
                    self.embed_artwork(plain, artwork_path, tagged, title=title, artist=artist, album=album)
                except AudioAssemblyError as e:
                    logger.warning("Artwork embedding failed; using plain audio", extra={"error": str(e)})
                else:
                    shutil.move(tagged, out_path)
                    if link:
                        add_link_frame(out_path, link)
                    logger.debug("Embedded artwork", extra={"path": out_path})
                    return out_path

        else:
            logger.debug("No artwork found; skipping embedding", extra={"artwork": artwork_path})

        with open(out_path, "wb") as f:
            f.write(data)
        write_id3_tags(out_path, title=title, artist=artist, album=album, link=link)
        return out_path
