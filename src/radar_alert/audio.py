"""
Audio - Alert Cue
=============================================
Description: Plays the alert sound when the overlay is shown. A WAV cue file
             is played through sounddevice; if it is missing, unreadable or
             no audio device is available, a synthesized 880 Hz chirp is
             played instead. Playback never raises into the display cycle.
Author: Radar Alert Team
Version: 1.0.0
"""

import logging
import wave
from pathlib import Path
from typing import Callable, Optional

import numpy as np

from .config import SOUND_FILE, SOUND_VOLUME

log = logging.getLogger('radar_alert.audio')

TONE_HZ = 880.0
TONE_SEC = 0.4
TONE_PEAK = 0.2
TONE_ATTACK_SEC = 0.02
TONE_DECAY_SEC = 0.35
TONE_RATE = 48000


def _sounddevice_output(samples: np.ndarray, sample_rate: int) -> None:
    # Deferred: importing sounddevice fails outright on hosts without PortAudio
    import sounddevice as sd
    sd.play(samples, sample_rate)


def synthesize_tone(sample_rate: int = TONE_RATE) -> np.ndarray:
    """Sine chirp: linear ramp to peak, exponential decay, then silence."""
    n = int(sample_rate * TONE_SEC)
    t = np.arange(n, dtype=np.float32) / sample_rate
    tone = np.sin(2 * np.pi * TONE_HZ * t).astype(np.float32)

    env = np.zeros(n, dtype=np.float32)
    attack = t < TONE_ATTACK_SEC
    env[attack] = TONE_PEAK * t[attack] / TONE_ATTACK_SEC
    decay = (t >= TONE_ATTACK_SEC) & (t < TONE_DECAY_SEC)
    span = TONE_DECAY_SEC - TONE_ATTACK_SEC
    env[decay] = TONE_PEAK * np.power(0.0001 / TONE_PEAK, (t[decay] - TONE_ATTACK_SEC) / span)
    return tone * env


def read_wav(path: Path, volume: float = SOUND_VOLUME):
    """Return (float32 samples, sample_rate) from a PCM WAV file."""
    with wave.open(str(path), 'rb') as wf:
        width = wf.getsampwidth()
        channels = wf.getnchannels()
        rate = wf.getframerate()
        raw = wf.readframes(wf.getnframes())

    if width == 2:
        data = np.frombuffer(raw, dtype='<i2').astype(np.float32) / 32768.0
    elif width == 1:
        data = (np.frombuffer(raw, dtype=np.uint8).astype(np.float32) - 128.0) / 128.0
    elif width == 4:
        data = np.frombuffer(raw, dtype='<i4').astype(np.float32) / 2147483648.0
    else:
        raise ValueError(f"Unsupported sample width: {width}")

    if channels > 1:
        data = data.reshape(-1, channels)
    return data * volume, rate


class AudioCue:
    def __init__(
        self,
        sound_file: Optional[str] = SOUND_FILE,
        volume: float = SOUND_VOLUME,
        output: Callable[[np.ndarray, int], None] = _sounddevice_output,
    ):
        self.sound_file = sound_file
        self.volume = volume
        self.output = output
        self.last_played: Optional[str] = None

    def play(self) -> str:
        """Play the cue. Returns 'file', 'tone' or 'silent'."""
        try:
            if not self.sound_file:
                raise FileNotFoundError("No sound file configured")
            samples, rate = read_wav(Path(self.sound_file), self.volume)
            self.output(samples, rate)
            self.last_played = 'file'
        except Exception as e:
            log.debug(f"Cue file unavailable ({e}), playing tone")
            try:
                self.output(synthesize_tone(), TONE_RATE)
                self.last_played = 'tone'
            except Exception as e2:
                log.warning(f"Audio output unavailable: {e2}")
                self.last_played = 'silent'
        return self.last_played
