from __future__ import annotations

import asyncio
import logging
import os
from typing import Optional, Sequence

from openai import AsyncOpenAI


logger = logging.getLogger(__name__)


class OpenAITTS:
    name = "openai"

    def __init__(
        self,
        model: str,
        voices: Sequence[str],
        api_key_env: str = "OPENAI_API_KEY",
        max_retries: int = 1,
        initial_retry_delay: float = 2.0,
    ) -> None:
        api_key = os.environ.get(api_key_env)
        if not api_key:
            raise RuntimeError(f"OpenAI TTS selected but env var '{api_key_env}' not set")
        self.client = AsyncOpenAI(api_key=api_key)
        self.model = model
        self.available_voices = list(voices) or ["nova"]
        self.max_retries = max(1, max_retries)
        self.initial_retry_delay = initial_retry_delay

    async def synthesize(self, text: str, voice: Optional[str] = None) -> bytes:
        selected = voice or self.available_voices[0]
        attempt = 0
        delay = self.initial_retry_delay
        while True:
            attempt += 1
            try:
                # Prefer streaming to reliably obtain raw bytes across SDK versions
                async with self.client.audio.speech.with_streaming_response.create(
                    model=self.model,
                    voice=selected,
                    input=text,
                    response_format="mp3",
                ) as response:
                    buf = b"".join([part async for part in response.iter_bytes()])
                if not buf:
                    raise RuntimeError("Empty audio buffer from OpenAI TTS")
                logger.debug("OpenAI TTS chunk done", extra={"voice": selected, "bytes": len(buf)})
                return buf
            except Exception as e:  # noqa: BLE001
                logger.warning(
                    "TTS request failed",
                    extra={"provider": self.name, "attempt": attempt, "error": str(e)},
                )
                if attempt >= self.max_retries:
                    raise
                await asyncio.sleep(delay)
                delay *= 2
