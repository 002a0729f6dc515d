"""Speech output (piper + sox) and speech input (whisper.cpp stream)."""

import asyncio
import os
import re
from typing import Awaitable, Callable, Optional, Set

from gamal.display.citations import strip_citations
from gamal.models.config import VoiceConfig
from gamal.utils.logging import get_logger


logger = get_logger(__name__)

TRANSCRIPTION_END_MARKER = re.compile(r"Transcription \d+ END", re.IGNORECASE)

TranscriptHandler = Callable[[str], Awaitable[None]]


def clean_transcript(buffer: str) -> str:
    """
    Turn raw whisper-stream output into plain text.

    Status lines (###) are dropped, lines are joined, and dots plus
    bracketed or parenthesized annotations such as [BLANK_AUDIO] or
    (music) are removed.
    """
    lines = [line for line in buffer.split("\n") if line and not line.startswith("###")]
    text = " ".join(lines)
    text = text.replace(".", "")
    text = re.sub(r"\[.*?\]", "", text)
    text = re.sub(r"\(.*?\)", "", text)
    return text.strip()


class Speaker:
    """Reads answers aloud by piping piper's audio into sox's play."""

    def __init__(self, config: VoiceConfig):
        self.config = config
        # Background tasks feeding text to piper and reaping it
        self.pending: Set[asyncio.Task] = set()

    async def speak(self, text: str, language_code: str = "en") -> Optional[asyncio.subprocess.Process]:
        """
        Start speaking text; returns the player process, or None when no
        TTS model is configured for the language or the tools are missing.

        The text is fed to piper in the background; the task waits for
        piper to exit so no child is left behind.
        """
        model = self.config.tts_model(language_code)
        if not model:
            logger.debug("tts_model_unavailable", language=language_code)
            return None

        read_fd, write_fd = os.pipe()
        player = None
        try:
            player = await asyncio.create_subprocess_exec(
                "play", "-q", "-V0", "-",
                stdin=read_fd,
                stdout=asyncio.subprocess.DEVNULL,
            )
            piper = await asyncio.create_subprocess_exec(
                "piper", "--quiet", "--model", model, "-f", "-",
                stdin=asyncio.subprocess.PIPE,
                stdout=write_fd,
            )
        except OSError as e:
            logger.warning("tts_failed", error=str(e))
            if player is not None:
                player.kill()
            return None
        finally:
            # The children hold their own copies of the pipe ends
            os.close(read_fd)
            os.close(write_fd)

        task = asyncio.create_task(self._feed(piper, strip_citations(text)))
        self.pending.add(task)
        task.add_done_callback(self.pending.discard)

        logger.info("tts_started", language=language_code, model=model)
        return player

    async def _feed(self, piper: asyncio.subprocess.Process, text: str) -> None:
        # communicate() tolerates piper closing its input early
        await piper.communicate(text.encode("utf-8"))
        if piper.returncode:
            logger.warning("tts_piper_failed", returncode=piper.returncode)


class Listener:
    """Runs whisper-cpp-stream and reports each finished transcription."""

    def __init__(self, config: VoiceConfig):
        self.config = config
        self.process: Optional[asyncio.subprocess.Process] = None

    async def listen(self, on_transcript: TranscriptHandler) -> None:
        """
        Listen until the recognizer exits or stop() is called.

        Does nothing when no whisper model is configured.
        """
        if not self.config.whisper_model:
            logger.debug("asr_model_unavailable")
            return

        try:
            self.process = await asyncio.create_subprocess_exec(
                self.config.whisper_stream, "-m", self.config.whisper_model, "--step", "0",
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            logger.warning("asr_failed", error=str(e))
            return

        logger.info("asr_started", command=self.config.whisper_stream)
        buffer = ""
        while True:
            data = await self.process.stdout.read(4096)
            if not data:
                break
            buffer += data.decode("utf-8", errors="replace")
            if TRANSCRIPTION_END_MARKER.search(buffer):
                transcript = clean_transcript(TRANSCRIPTION_END_MARKER.sub("", buffer))
                buffer = ""
                if transcript:
                    await on_transcript(transcript)

        await self.process.wait()
        logger.info("asr_finished", returncode=self.process.returncode)

    def stop(self) -> None:
        if self.process and self.process.returncode is None:
            self.process.terminate()
