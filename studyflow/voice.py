# studyflow/voice.py
import hashlib
import logging
import os
import time
from typing import Optional

from gtts import gTTS

from studyflow.session import CURRENT_CHANGED, SIDE_FLIPPED

logger = logging.getLogger(__name__)


class VoicePlayer:
    """
    Reads the visible side of the current flashcard aloud.

    Subscribes to a session's notifications, which only queue the text to read.
    flush() does the network work and writes one mp3 per (language, text)
    pair under output_dir, reusing files already generated. Callers on an
    event loop run flush() in a worker thread.
    """

    def __init__(self, output_dir: str = "media/voice", lang: str = "en", delay: float = 0):
        self.output_dir = output_dir
        self.lang = lang
        self.delay = delay
        self.last_audio: Optional[str] = None
        self.pending: Optional[str] = None
        self._queued = False

    def audio_path(self, text: str) -> str:
        digest = hashlib.sha1(f"{self.lang}:{text}".encode("utf-8")).hexdigest()[:16]
        return os.path.join(self.output_dir, f"{digest}.mp3")

    def speak(self, text: str) -> Optional[str]:
        if not text:
            return None
        filename = self.audio_path(text)
        if os.path.exists(filename):
            return filename
        try:
            os.makedirs(self.output_dir, exist_ok=True)
            tts = gTTS(text=text, lang=self.lang)
            tts.save(filename)
            logger.info("Generated audio for %r", text)
        except Exception as e:
            logger.warning("Error generating audio for %r: %s", text, e)
            return None
        finally:
            if self.delay:
                time.sleep(self.delay)
        return filename

    def __call__(self, event: str, session):
        if event not in (CURRENT_CHANGED, SIDE_FLIPPED):
            return
        self.pending = session.visible_text()
        self._queued = True

    def flush(self) -> Optional[str]:
        """Speaks the text queued by the latest notification and returns its audio path."""
        if self._queued:
            text, self.pending, self._queued = self.pending, None, False
            self.last_audio = self.speak(text)
        return self.last_audio
