import math
from typing import Optional, Sequence

from velocity.models import MetricsCounters, MetricsSnapshot

CHARS_PER_WORD = 5


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def score_input(counters: MetricsCounters, previous: str, current: str, target: str) -> Optional[str]:
    """Score one input change against the target sentence.

    Only growth is scored, and only the last position of the new input is
    compared, however many characters arrived at once. Returns None for a
    hit or no-op, otherwise the expected character lowercased ('' when the
    input ran past the end of the target). Shrinking the input never
    touches the counters.
    """
    if len(current) <= len(previous):
        return None
    counters.total_chars_typed += 1
    index = len(current) - 1
    if index < len(target) and current[index] == target[index]:
        counters.correct_chars += 1
        return None
    if index >= len(target):
        # Past the end of the target there is nothing to blame
        return ''
    return target[index].lower()


def elapsed_minutes(start_time: Optional[float], now: float) -> float:
    if start_time is None:
        return 0.0
    return (now - start_time) / 60.0


def words_per_minute(correct_chars: int, minutes: float) -> int:
    if minutes <= 0:
        return 0
    return round_half_up((correct_chars / CHARS_PER_WORD) / minutes)


def accuracy(counters: MetricsCounters) -> int:
    if counters.total_chars_typed == 0:
        return 100
    return round_half_up(counters.correct_chars / counters.total_chars_typed * 100)


def progress(sentence_index: int, input_buffer: str, sentences: Sequence[str]) -> float:
    if not sentences:
        return 0.0
    target = sentences[sentence_index]
    partial = min(1.0, len(input_buffer) / len(target)) if target else 0.0
    return min(1.0, (sentence_index + partial) / len(sentences))


def snapshot(counters: MetricsCounters, start_time: Optional[float], now: float,
             sentence_index: int, input_buffer: str, sentences: Sequence[str],
             time_remaining: float) -> MetricsSnapshot:
    return MetricsSnapshot(
        wpm=words_per_minute(counters.correct_chars, elapsed_minutes(start_time, now)),
        accuracy=accuracy(counters),
        progress=progress(sentence_index, input_buffer, sentences),
        time_left=int(math.ceil(max(0.0, time_remaining))),
    )
