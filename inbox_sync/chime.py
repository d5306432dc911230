from __future__ import annotations

import io
import logging
import math
import struct
import wave
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol, Sequence, Tuple

from .events import EventBus

log = logging.getLogger(__name__)

SAMPLE_RATE = 22050
MESSAGE = "message"
HANDOFF = "handoff"


class ChimePlaybackError(RuntimeError):
    """Playback was refused (no listener, autoplay blocked, output closed)."""


@dataclass(frozen=True)
class Note:
    freq: float
    start: float = 0.0
    length: float = 0.5
    gain: float = 0.4
    floor: float = 0.001


@dataclass(frozen=True)
class ChimeSpec:
    """A procedural chime: either staggered decaying notes or a decaying chord."""

    duration: float
    notes: Tuple[Note, ...] = ()
    # Chord mode: equal-weight partials under exp(-decay * t), scaled by `level`.
    partials: Tuple[float, ...] = ()
    decay: float = 8.0
    level: float = 0.4


# Two-note ascending chime, C6 then E6 150ms later.
MESSAGE_CHIME = ChimeSpec(
    duration=0.65,
    notes=(Note(1046.5, start=0.0), Note(1318.51, start=0.15)),
)
# Short dual-tone beep for handoffs.
HANDOFF_CHIME = ChimeSpec(duration=0.3, partials=(880.0, 1108.73), decay=8.0, level=0.4)

CHIMES: Dict[str, ChimeSpec] = {MESSAGE: MESSAGE_CHIME, HANDOFF: HANDOFF_CHIME}


def _note_sample(note: Note, t: float) -> float:
    local = t - note.start
    if local < 0.0 or local >= note.length:
        return 0.0
    # Exponential ramp from `gain` down to `floor` over the note length.
    envelope = note.gain * (note.floor / note.gain) ** (local / note.length)
    return math.sin(2.0 * math.pi * note.freq * local) * envelope


def render_samples(spec: ChimeSpec, sample_rate: int = SAMPLE_RATE) -> list[float]:
    count = int(spec.duration * sample_rate)
    out: list[float] = []
    weight = 1.0 / len(spec.partials) if spec.partials else 0.0
    for i in range(count):
        t = i / sample_rate
        value = 0.0
        for note in spec.notes:
            value += _note_sample(note, t)
        if spec.partials:
            chord = sum(math.sin(2.0 * math.pi * f * t) for f in spec.partials) * weight
            value += chord * math.exp(-t * spec.decay) * spec.level
        out.append(max(-1.0, min(1.0, value)))
    return out


def encode_wav(samples: Sequence[float], sample_rate: int = SAMPLE_RATE) -> bytes:
    """16-bit mono PCM in a RIFF/WAVE container, built in memory."""
    frames = struct.pack(
        "<%dh" % len(samples),
        *(int(s * 0x8000) if s < 0 else int(s * 0x7FFF) for s in samples),
    )
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(frames)
    return buf.getvalue()


def render_chime(name: str = MESSAGE, sample_rate: int = SAMPLE_RATE) -> bytes:
    spec = CHIMES.get(name)
    if spec is None:
        raise KeyError(f"Unknown chime: {name}")
    return encode_wav(render_samples(spec, sample_rate), sample_rate)


class AudioOutput(Protocol):
    def play(self, name: str, clip: bytes) -> None: ...


class BusAudioOutput:
    """Plays clips by telling the connected inbox page to fetch and play them."""

    def __init__(self, bus: EventBus, url_template: str = "/inbox/sounds/{name}.wav", volume: float = 0.7):
        self.bus = bus
        self.url_template = url_template
        self.volume = volume

    def play(self, name: str, clip: bytes) -> None:
        if not self.bus.subscriber_count:
            raise ChimePlaybackError("no page connected to play audio")
        self.bus.publish(
            "chime",
            sound=name,
            url=self.url_template.format(name=name),
            bytes=len(clip),
            volume=self.volume,
        )


class ChimePlayer:
    """Plays procedurally rendered chimes through one long-lived audio output.

    The output is created on first use and kept for the session. Clips are rendered
    once per sound. Playback never raises.
    """

    def __init__(self, output_factory: Callable[[], AudioOutput], sample_rate: int = SAMPLE_RATE):
        self._output_factory = output_factory
        self._output: Optional[AudioOutput] = None
        self.sample_rate = sample_rate
        self._clips: Dict[str, bytes] = {}
        self.played = 0

    def clip(self, name: str = MESSAGE) -> bytes:
        data = self._clips.get(name)
        if data is None:
            data = render_chime(name, self.sample_rate)
            self._clips[name] = data
        return data

    def _get_output(self) -> Optional[AudioOutput]:
        if self._output is None:
            try:
                self._output = self._output_factory()
            except Exception as exc:
                log.debug("Audio output unavailable: %s", exc)
                return None
        return self._output

    def play(self, name: str = MESSAGE) -> bool:
        output = self._get_output()
        if output is None:
            return False
        try:
            output.play(name, self.clip(name))
        except Exception as exc:
            log.debug("Chime %s not played: %s", name, exc)
            return False
        self.played += 1
        return True
