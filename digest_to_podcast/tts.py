from __future__ import annotations

import asyncio
import logging
import os
import re
from typing import List, Optional, Sequence

from google.cloud import texttospeech

from .models import Chunk


logger = logging.getLogger(__name__)

# Japanese TTS services cap requests around 4000 bytes (~3 bytes per char)
DEFAULT_MAX_CHUNK_SIZE = 1400

PARAGRAPH_SEPARATOR = "\n\n"
_PARAGRAPH_SPLIT = re.compile(r"\n\s*\n")
# Full-width terminators always end a sentence; ASCII ones only before whitespace
_SENTENCE_SPLIT = re.compile(r"(?<=[。．！？])|(?<=[.!?])(?=\s)")


def split_sentences(paragraph: str) -> List[str]:
    return [s for s in _SENTENCE_SPLIT.split(paragraph) if s.strip()]


def split_into_chunks(text: str, max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE) -> List[Chunk]:
    """Split narration into TTS-sized chunks along paragraph and sentence lines.

    Paragraphs are packed greedily (joined by a blank line). A paragraph that
    is itself too long is packed sentence by sentence; a sentence longer than
    the limit becomes a chunk of its own rather than being cut.
    """
    if max_chunk_size < 1:
        raise ValueError(f"max_chunk_size must be >= 1, got {max_chunk_size}")
    if not text or not text.strip():
        return []

    paragraphs = [p.strip() for p in _PARAGRAPH_SPLIT.split(text) if p.strip()]
    pieces: List[str] = []
    buf = ""

    def flush() -> None:
        nonlocal buf
        if buf.strip():
            pieces.append(buf.strip())
        buf = ""

    for para in paragraphs:
        if len(para) > max_chunk_size:
            flush()
            for sentence in split_sentences(para):
                if not buf:
                    buf = sentence.lstrip()
                elif len(buf) + len(sentence) <= max_chunk_size:
                    buf += sentence
                else:
                    flush()
                    buf = sentence.lstrip()
                if len(buf) > max_chunk_size:
                    flush()
            flush()
        elif not buf:
            buf = para
        elif len(buf) + len(PARAGRAPH_SEPARATOR) + len(para) <= max_chunk_size:
            buf += PARAGRAPH_SEPARATOR + para
        else:
            flush()
            buf = para
    flush()

    return [Chunk(index=i, text=piece) for i, piece in enumerate(pieces, start=1)]


def _ensure_credentials_from_inline_json() -> None:
    # Allow credentials via GCP_TTS_SERVICE_ACCOUNT_JSON secret
    inline_json = os.environ.get("GCP_TTS_SERVICE_ACCOUNT_JSON")
    if inline_json and not os.environ.get("GOOGLE_APPLICATION_CREDENTIALS"):
        path = os.path.join(".secrets", "gcp_tts_sa.json")
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(inline_json)
        os.environ["GOOGLE_APPLICATION_CREDENTIALS"] = path


class GoogleCloudTTS:
    name = "gcp"

    def __init__(
        self,
        language_code: str,
        voices: Sequence[str],
        speaking_rate: float = 1.0,
        pitch: float = 0.0,
        max_retries: int = 1,
        initial_retry_delay: float = 2.0,
    ) -> None:
        _ensure_credentials_from_inline_json()
        self.client = texttospeech.TextToSpeechAsyncClient()
        self.language_code = language_code
        self.available_voices = list(voices) or ["ja-JP-Neural2-B"]
        self.speaking_rate = speaking_rate
        self.pitch = pitch
        self.max_retries = max(1, max_retries)
        self.initial_retry_delay = initial_retry_delay

    async def synthesize(self, text: str, voice: Optional[str] = None) -> bytes:
        voice_name = voice or self.available_voices[0]
        attempt = 0
        delay = self.initial_retry_delay
        while True:
            attempt += 1
            try:
                response = await self.client.synthesize_speech(
                    request={
                        "input": texttospeech.SynthesisInput(text=text),
                        "voice": texttospeech.VoiceSelectionParams(
                            language_code=self.language_code,
                            name=voice_name,
                        ),
                        "audio_config": texttospeech.AudioConfig(
                            audio_encoding=texttospeech.AudioEncoding.MP3,
                            speaking_rate=self.speaking_rate,
                            pitch=self.pitch,
                        ),
                    }
                )
                if not response.audio_content:
                    raise RuntimeError("Empty audio content from Google Cloud TTS")
                return response.audio_content
            except Exception as e:  # noqa: BLE001
                logger.warning(
                    "TTS request failed",
                    extra={"provider": self.name, "attempt": attempt, "error": str(e)},
                )
                if attempt >= self.max_retries:
                    raise
                await asyncio.sleep(delay)
                delay *= 2
