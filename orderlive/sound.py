"""Procedural notification tones.

One short sine tone per status: gain starts at 0.3 and decays exponentially
to 0.01 over half a second. Playback is cosmetic; SoundPlayer never lets an
audio failure reach its caller.
"""

from __future__ import annotations

from typing import Callable, Optional

import numpy as np
import structlog

from .status import DEFAULT_FREQUENCY_HZ, TONE_FREQUENCIES

logger = structlog.get_logger()

AudioSink = Callable[[bytes, int], None]


class ToneGenerator:
    def __init__(
        self,
        sample_rate: int = 22050,
        duration: float = 0.5,
        start_gain: float = 0.3,
        end_gain: float = 0.01,
    ):
        self.sample_rate = sample_rate
        self.duration = duration
        self.start_gain = start_gain
        self.end_gain = end_gain

    def frequency(self, status: str) -> float:
        return TONE_FREQUENCIES.get(status, DEFAULT_FREQUENCY_HZ)

    def synthesize(self, status: str) -> np.ndarray:
        """Float32 samples in [-1, 1] for the status tone."""
        n = int(self.sample_rate * self.duration)
        t = np.arange(n, dtype=np.float64) / self.sample_rate
        envelope = self.start_gain * np.power(self.end_gain / self.start_gain, t / self.duration)
        wave = np.sin(2.0 * np.pi * self.frequency(status) * t)
        return (wave * envelope).astype(np.float32)

    def pcm16(self, status: str) -> bytes:
        """Little-endian signed 16-bit mono PCM for the status tone."""
        samples = np.clip(self.synthesize(status), -1.0, 1.0)
        return (samples * 32767.0).astype("<i2").tobytes()


class SoundPlayer:
    """Plays status tones through an audio sink, if there is one."""

    def __init__(self, sink: Optional[AudioSink] = None, generator: Optional[ToneGenerator] = None):
        self._sink = sink
        self._generator = generator or ToneGenerator()
        self.enabled = True

    @property
    def available(self) -> bool:
        return self._sink is not None

    def play(self, status: str) -> bool:
        """Play the tone for ``status``. Returns False if nothing was played."""
        if not self.enabled or self._sink is None:
            return False
        try:
            self._sink(self._generator.pcm16(status), self._generator.sample_rate)
        except Exception as e:  # audio is cosmetic; any sink failure means no sound
            logger.warning("notification_sound_failed", status=status, error=str(e))
            return False
        return True
