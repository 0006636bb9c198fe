from __future__ import annotations

import logging
import random
from typing import List, Optional, Protocol, Sequence

from .batching import run_batched
from .config import TTSConfig
from .models import AudioSegment, Chunk


logger = logging.getLogger(__name__)


class TTSProvider(Protocol):
    name: str
    available_voices: List[str]

    async def synthesize(self, text: str, voice: Optional[str] = None) -> bytes:
        ...


def create_tts_provider(cfg: TTSConfig) -> TTSProvider:
    provider = (cfg.provider or "").lower()
    if provider == "openai":
        from .tts_openai import OpenAITTS

        return OpenAITTS(
            model=cfg.model,
            voices=cfg.voices,
            api_key_env=cfg.api_key_env,
            max_retries=cfg.max_retries,
            initial_retry_delay=cfg.initial_retry_delay,
        )
    if provider == "gcp":
        from .tts import GoogleCloudTTS

        return GoogleCloudTTS(
            language_code=cfg.language_code,
            voices=cfg.voices,
            speaking_rate=cfg.speaking_rate,
            pitch=cfg.pitch,
            max_retries=cfg.max_retries,
            initial_retry_delay=cfg.initial_retry_delay,
        )
    raise ValueError(f"Unknown TTS provider: {cfg.provider}")


class OrderedConcurrentSynthesizer:
    """Synthesize chunks in windows of `concurrency`, keeping source order.

    Any chunk failure aborts the whole synthesis; there is no partial output.
    """

    def __init__(self, provider: TTSProvider, concurrency: int = 6) -> None:
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self.provider = provider
        self.concurrency = concurrency

    def pick_voice(self) -> Optional[str]:
        voices = getattr(self.provider, "available_voices", None) or []
        return random.choice(voices) if voices else None

    async def synthesize_all(self, chunks: Sequence[Chunk], voice: Optional[str] = None) -> List[AudioSegment]:
        if not chunks:
            return []
        # One voice for the whole episode
        voice = voice or self.pick_voice()
        total = len(chunks)
        logger.info(
            "Synthesizing chunks",
            extra={"chunks": total, "concurrency": self.concurrency, "provider": self.provider.name, "voice": voice},
        )

        async def synthesize_chunk(chunk: Chunk) -> AudioSegment:
            logger.debug("Synthesizing chunk", extra={"chunk": chunk.index, "total": total, "chars": len(chunk.text)})
            data = await self.provider.synthesize(chunk.text, voice)
            return AudioSegment(index=chunk.index, data=data)

        segments = await run_batched(chunks, self.concurrency, synthesize_chunk)
        logger.info("Synthesis complete", extra={"segments": len(segments)})
        return segments
