from typing import Dict, List, Optional

from velocity.models import AnalysisData, Difficulty, HistorySample
from .metrics import round_half_up


class AnalysisRecorder:
    """Time series of sampled WPM plus the per-key error tally for one race."""

    def __init__(self):
        self.history: List[HistorySample] = []
        self.errors: Dict[str, int] = {}
        self.peak_wpm = 0

    def reset(self) -> None:
        self.history = []
        self.errors = {}
        self.peak_wpm = 0

    def record(self, elapsed: float, wpm: int, opponent_wpm: Optional[int] = None) -> HistorySample:
        sample = HistorySample(time=round(elapsed, 3), wpm=wpm, opponent_wpm=opponent_wpm)
        self.history.append(sample)
        if wpm > self.peak_wpm:
            self.peak_wpm = wpm
        return sample

    def note_error(self, expected: str) -> None:
        key = expected.lower()
        if len(key) != 1:
            return
        self.errors[key] = self.errors.get(key, 0) + 1

    def finalize(self, total_time: float, accuracy: int, difficulty: Difficulty, final_wpm: int) -> AnalysisData:
        """Package the race; without samples the final WPM stands in for avg and peak."""
        if self.history:
            avg_wpm = round_half_up(sum(s.wpm for s in self.history) / len(self.history))
            peak_wpm = self.peak_wpm
        else:
            avg_wpm = peak_wpm = final_wpm
        return AnalysisData(
            history=tuple(self.history),
            errors=dict(self.errors),
            avg_wpm=avg_wpm,
            peak_wpm=peak_wpm,
            total_time=round(total_time, 3),
            accuracy=accuracy,
            difficulty=difficulty,
        )
