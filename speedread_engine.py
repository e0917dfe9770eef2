"""
speedread_engine.py

Pacing and tokenization engine for RSVP reading with an anchored ORP letter.

Features:
- Tokenize raw text into display units (whitespace and hyphen runs split units)
- ORP focal split (before / focal / after) with original characters preserved
- Per-word display delay from WPM plus trailing punctuation pauses
- Remaining reading time over the unread suffix
- Playback state machine (idle -> countdown -> playing -> paused -> finished)
  as a pure transition function, plus a timer-driven controller
- Generation-tagged timers so a stale callback can never move a newer session
"""

from __future__ import annotations

import logging
import math
import re
import threading
import unicodedata
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)


# ============================================================
# Function List (explicit to help preserve all functions)
# ============================================================
# tokenize
# focal_rank
# focal_index
# split_unit
# pause_multiplier
# delay_ms
# remaining_ms
# remaining_time
# format_remaining
# progress_percent
# clamp_rate
# apply
# snapshot

MIN_RATE = 100
MAX_RATE = 1000
DEFAULT_RATE = 300
RATE_STEP = 50
COUNTDOWN_START = 3
COUNTDOWN_TICK_MS = 1000

UNIT_SPLIT_RE = re.compile(r"[\s-]+")
# Unicode-aware on purpose: accented letters count toward the rank, so "naïve"
# focuses on "ï" where an ASCII-only word class would pick "a".
WORD_CHAR_RE = re.compile(r"\w")

# (trailing characters, multiplier), first match wins
PAUSE_RULES: Tuple[Tuple[str, float], ...] = (
    (".!?", 1.5),
    (";:", 1.2),
    (",", 1.1),
)

# (max word characters, 1-based focal rank)
RANK_TABLE: Tuple[Tuple[int, int], ...] = (
    (2, 1),
    (4, 2),
    (6, 3),
    (9, 4),
    (13, 5),
)
MAX_RANK = 6


# -------------------------------
# Tokenizer
# -------------------------------
def tokenize(text: str) -> Tuple[str, ...]:
    if not text:
        return ()
    return tuple(u for u in UNIT_SPLIT_RE.split(text.strip()) if u)


# -------------------------------
# Focal splitter
# -------------------------------
@dataclass(frozen=True)
class FocalSplit:
    before: str = ""
    focal: str = ""
    after: str = ""

    @property
    def text(self) -> str:
        return self.before + self.focal + self.after


def focal_rank(n: int) -> int:
    for limit, rank in RANK_TABLE:
        if n <= limit:
            return rank
    return MAX_RANK


def focal_index(unit: str) -> int:
    """Absolute index of the focal character in ``unit``.

    Only word characters count toward the rank; punctuation is scanned over but
    never counted. A unit with no word characters uses its midpoint.
    """
    positions = [m.start() for m in WORD_CHAR_RE.finditer(unit)]
    if not positions:
        return len(unit) // 2
    rank = focal_rank(len(positions))
    if rank <= len(positions):
        return positions[rank - 1]
    return positions[0]


def split_unit(unit: str) -> FocalSplit:
    if not unit:
        return FocalSplit()
    idx = focal_index(unit)
    end = idx + 1
    # combining marks (decomposed accents) stay with the focal letter
    while end < len(unit) and unicodedata.combining(unit[end]):
        end += 1
    return FocalSplit(before=unit[:idx], focal=unit[idx:end], after=unit[end:])


# -------------------------------
# Pacing model
# -------------------------------
def pause_multiplier(unit: str) -> float:
    if not unit:
        return 1.0
    last = unit[-1]
    for chars, mult in PAUSE_RULES:
        if last in chars:
            return mult
    return 1.0


def delay_ms(unit: str, rate: int) -> float:
    base = (60 / rate) * 1000
    return base * pause_multiplier(unit)


def remaining_ms(sequence: Tuple[str, ...], from_index_exclusive: int, rate: int) -> float:
    if not sequence or from_index_exclusive >= len(sequence) - 1:
        return 0.0
    start = max(0, from_index_exclusive + 1)
    return sum(delay_ms(u, rate) for u in sequence[start:])


def remaining_time(sequence: Tuple[str, ...], from_index_exclusive: int, rate: int) -> int:
    # float sums like 220.00000000000003 must not spill into an extra second
    total = round(remaining_ms(sequence, from_index_exclusive, rate), 6)
    return int(math.ceil(total / 1000))


def format_remaining(seconds: int) -> str:
    seconds = max(0, int(seconds))
    return f"{seconds // 60}:{seconds % 60:02d}"


def progress_percent(position: int, total: int) -> int:
    if total <= 0:
        return 0
    # halves round up
    return int(math.floor((position + 1) / total * 100 + 0.5))


def clamp_rate(rate: int) -> int:
    return max(MIN_RATE, min(MAX_RATE, int(rate)))


# -------------------------------
# Playback state machine
# -------------------------------
class Mode(str, Enum):
    IDLE = "idle"
    COUNTDOWN = "countdown"
    PLAYING = "playing"
    PAUSED = "paused"
    FINISHED = "finished"


class TimerKind(str, Enum):
    COUNTDOWN_TICK = "countdown_tick"
    WORD = "word"


@dataclass(frozen=True)
class PlaybackState:
    sequence: Tuple[str, ...] = ()
    position: int = 0
    mode: Mode = Mode.IDLE
    rate: int = DEFAULT_RATE
    countdown: Optional[int] = None
    generation: int = 0

    @property
    def current_unit(self) -> str:
        if not self.sequence:
            return ""
        return self.sequence[self.position]

    @property
    def at_last_unit(self) -> bool:
        return bool(self.sequence) and self.position >= len(self.sequence) - 1


@dataclass(frozen=True)
class Start:
    text: str


@dataclass(frozen=True)
class Toggle:
    pass


@dataclass(frozen=True)
class Resume:
    pass


@dataclass(frozen=True)
class Stop:
    pass


@dataclass(frozen=True)
class Reset:
    pass


@dataclass(frozen=True)
class AdjustRate:
    delta: int


@dataclass(frozen=True)
class SkipCountdown:
    pass


@dataclass(frozen=True)
class CountdownTick:
    generation: int


@dataclass(frozen=True)
class WordElapsed:
    generation: int


Event = Union[Start, Toggle, Resume, Stop, Reset, AdjustRate, SkipCountdown, CountdownTick, WordElapsed]


@dataclass(frozen=True)
class ArmTimer:
    kind: TimerKind
    delay_ms: float
    generation: int

    def expiry_event(self) -> Event:
        if self.kind is TimerKind.COUNTDOWN_TICK:
            return CountdownTick(self.generation)
        return WordElapsed(self.generation)


@dataclass(frozen=True)
class Transition:
    state: PlaybackState
    timer: Optional[ArmTimer] = None

    def cancels(self, previous: PlaybackState) -> bool:
        """True when whatever timer ``previous`` had armed is now stale."""
        return self.state.generation != previous.generation


def _unchanged(state: PlaybackState) -> Transition:
    return Transition(state)


def _play(state: PlaybackState, **changes) -> Transition:
    new = replace(state, mode=Mode.PLAYING, countdown=None, generation=state.generation + 1, **changes)
    timer = ArmTimer(TimerKind.WORD, delay_ms(new.current_unit, new.rate), new.generation)
    return Transition(new, timer)


def _halt(state: PlaybackState, mode: Mode) -> Transition:
    return Transition(replace(state, mode=mode, countdown=None, generation=state.generation + 1))


def _on_start(state: PlaybackState, event: Start) -> Transition:
    sequence = tokenize(event.text)
    if not sequence:
        return _unchanged(state)
    new = replace(
        state,
        sequence=sequence,
        position=0,
        mode=Mode.COUNTDOWN,
        countdown=COUNTDOWN_START,
        generation=state.generation + 1,
    )
    return Transition(new, ArmTimer(TimerKind.COUNTDOWN_TICK, COUNTDOWN_TICK_MS, new.generation))


def _on_countdown_tick(state: PlaybackState, event: CountdownTick) -> Transition:
    if state.mode is not Mode.COUNTDOWN or event.generation != state.generation:
        return _unchanged(state)
    remaining = (state.countdown or 0) - 1
    if remaining <= 0:
        return _play(state)
    new = replace(state, countdown=remaining, generation=state.generation + 1)
    return Transition(new, ArmTimer(TimerKind.COUNTDOWN_TICK, COUNTDOWN_TICK_MS, new.generation))


def _on_word_elapsed(state: PlaybackState, event: WordElapsed) -> Transition:
    if state.mode is not Mode.PLAYING or event.generation != state.generation:
        return _unchanged(state)
    if state.at_last_unit:
        return _halt(state, Mode.FINISHED)
    return _play(state, position=state.position + 1)


def _on_toggle(state: PlaybackState, event: Toggle) -> Transition:
    if not state.sequence:
        return _unchanged(state)
    if state.mode is Mode.PLAYING:
        return _halt(state, Mode.PAUSED)
    if state.mode in (Mode.PAUSED, Mode.FINISHED):
        return _play(state)
    return _unchanged(state)


def _on_resume(state: PlaybackState, event: Resume) -> Transition:
    if state.sequence and state.mode in (Mode.PAUSED, Mode.FINISHED):
        return _play(state)
    return _unchanged(state)


def _on_stop(state: PlaybackState, event: Stop) -> Transition:
    if state.mode in (Mode.COUNTDOWN, Mode.PLAYING):
        return _halt(state, Mode.PAUSED)
    return _unchanged(state)


def _on_reset(state: PlaybackState, event: Reset) -> Transition:
    return Transition(PlaybackState(rate=state.rate, generation=state.generation + 1))


def _on_adjust_rate(state: PlaybackState, event: AdjustRate) -> Transition:
    rate = clamp_rate(state.rate + event.delta)
    if rate == state.rate:
        return _unchanged(state)
    return Transition(replace(state, rate=rate))


def _on_skip_countdown(state: PlaybackState, event: SkipCountdown) -> Transition:
    if state.mode is not Mode.COUNTDOWN:
        return _unchanged(state)
    return _play(state)


HANDLERS = {
    Start: _on_start,
    Toggle: _on_toggle,
    Resume: _on_resume,
    Stop: _on_stop,
    Reset: _on_reset,
    AdjustRate: _on_adjust_rate,
    SkipCountdown: _on_skip_countdown,
    CountdownTick: _on_countdown_tick,
    WordElapsed: _on_word_elapsed,
}


def apply(state: PlaybackState, event: Event) -> Transition:
    """Pure transition: ``(state, event) -> (new state, timer to arm or None)``.

    Any transition whose state carries a new ``generation`` invalidates the
    previously armed timer; the caller must cancel that handle.
    """
    handler = HANDLERS.get(type(event))
    if handler is None:
        raise TypeError(f"Unknown playback event: {event!r}")
    return handler(state, event)


# -------------------------------
# Output surface
# -------------------------------
@dataclass(frozen=True)
class Snapshot:
    focal: str
    before: str
    after: str
    position: int
    total: int
    mode: Mode
    rate: int
    remaining_seconds: int
    countdown: Optional[int] = None
    progress: int = 0
    remaining_label: str = "0:00"

    def to_dict(self) -> dict:
        return {
            "focal": self.focal,
            "before": self.before,
            "after": self.after,
            "position": self.position,
            "total": self.total,
            "mode": self.mode.value,
            "rate": self.rate,
            "remaining_seconds": self.remaining_seconds,
            "countdown": self.countdown,
            "progress": self.progress,
            "remaining_label": self.remaining_label,
        }


def snapshot(state: PlaybackState) -> Snapshot:
    parts = split_unit(state.current_unit)
    remaining = remaining_time(state.sequence, state.position, state.rate)
    return Snapshot(
        focal=parts.focal,
        before=parts.before,
        after=parts.after,
        position=state.position,
        total=len(state.sequence),
        mode=state.mode,
        rate=state.rate,
        remaining_seconds=remaining,
        countdown=state.countdown,
        progress=progress_percent(state.position, len(state.sequence)),
        remaining_label=format_remaining(remaining),
    )


# -------------------------------
# Timer substrate + controller
# -------------------------------
class ThreadingScheduler:
    """Arms one-shot timers on daemon threads; handles expose ``cancel()``."""

    def schedule(self, delay: float, callback: Callable[[], None]) -> threading.Timer:
        timer = threading.Timer(delay / 1000.0, callback)
        timer.daemon = True
        timer.start()
        return timer


Listener = Callable[[Snapshot], None]


class ReaderController:
    """Owns the single PlaybackState and drives it from commands and timers.

    Commands and timer expiries are serialized through one lock, so each event
    is handled atomically. A stale timer that slips past ``cancel()`` still
    carries an old generation and is dropped by ``apply``.
    """

    def __init__(self, scheduler=None, rate: int = DEFAULT_RATE) -> None:
        self.scheduler = scheduler if scheduler is not None else ThreadingScheduler()
        self.listeners: List[Listener] = []
        self._lock = threading.RLock()
        self._state = PlaybackState(rate=clamp_rate(rate))
        self._handle = None

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def has_pending_timer(self) -> bool:
        return self._handle is not None

    def snapshot(self) -> Snapshot:
        with self._lock:
            return snapshot(self._state)

    def subscribe(self, listener: Listener) -> None:
        self.listeners.append(listener)

    def dispatch(self, event: Event) -> Snapshot:
        with self._lock:
            previous = self._state
            transition = apply(previous, event)
            if transition.cancels(previous):
                self._cancel_pending()
            self._state = transition.state
            if transition.timer is not None:
                self._arm(transition.timer)
            if transition.state is previous:
                logger.debug("Ignored %s in mode %s", type(event).__name__, previous.mode.value)
            else:
                logger.debug(
                    "%s: %s -> %s (position %d/%d, rate %d)",
                    type(event).__name__,
                    previous.mode.value,
                    transition.state.mode.value,
                    transition.state.position,
                    len(transition.state.sequence),
                    transition.state.rate,
                )
            snap = snapshot(self._state)
            if transition.state is not previous:
                for listener in list(self.listeners):
                    listener(snap)
            return snap

    def _cancel_pending(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _arm(self, timer: ArmTimer) -> None:
        def fire() -> None:
            with self._lock:
                if self._state.generation != timer.generation:
                    return
                self._handle = None
                self.dispatch(timer.expiry_event())

        self._handle = self.scheduler.schedule(timer.delay_ms, fire)

    # Commands exposed to host collaborators
    def start(self, text: str) -> Snapshot:
        return self.dispatch(Start(text))

    def toggle(self) -> Snapshot:
        return self.dispatch(Toggle())

    def resume(self) -> Snapshot:
        return self.dispatch(Resume())

    def stop(self) -> Snapshot:
        return self.dispatch(Stop())

    def reset(self) -> Snapshot:
        return self.dispatch(Reset())

    def adjust_rate(self, delta: int) -> Snapshot:
        return self.dispatch(AdjustRate(delta))

    def skip_countdown(self) -> Snapshot:
        return self.dispatch(SkipCountdown())
