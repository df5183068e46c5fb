import pytest

from velocity.models import Difficulty
from velocity.services.race.analysis import AnalysisRecorder


def test_record_tracks_peak():
    recorder = AnalysisRecorder()
    recorder.record(0.5, 10)
    recorder.record(1.0, 40, opponent_wpm=22)
    recorder.record(1.5, 30)
    assert recorder.peak_wpm == 40
    assert [s.wpm for s in recorder.history] == [10, 40, 30]
    assert recorder.history[1].to_dict() == {'time': 1.0, 'wpm': 40, 'opponentWpm': 22}
    assert 'opponentWpm' not in recorder.history[0].to_dict()


def test_note_error_keeps_single_lowercase_keys():
    recorder = AnalysisRecorder()
    recorder.note_error('B')
    recorder.note_error('b')
    recorder.note_error('')
    assert recorder.errors == {'b': 2}


def test_finalize_builds_immutable_report():
    recorder = AnalysisRecorder()
    recorder.record(0.5, 10)
    recorder.record(1.0, 21)
    recorder.note_error('x')
    data = recorder.finalize(total_time=1.0, accuracy=90, difficulty=Difficulty.HARD, final_wpm=21)
    assert data.avg_wpm == 16  # 15.5 rounds half up
    assert data.peak_wpm == 21
    assert data.total_errors == 1
    with pytest.raises(TypeError):
        data.errors['y'] = 1
    recorder.note_error('x')
    assert data.errors['x'] == 1
    assert data.to_dict()['difficulty'] == 'HARD'


def test_finalize_without_samples_uses_final_wpm():
    data = AnalysisRecorder().finalize(total_time=0.2, accuracy=100, difficulty=Difficulty.EASY, final_wpm=7)
    assert data.avg_wpm == 7
    assert data.peak_wpm == 7
    assert data.history == ()


def test_reset_clears_everything():
    recorder = AnalysisRecorder()
    recorder.record(0.5, 50)
    recorder.note_error('q')
    recorder.reset()
    assert recorder.history == []
    assert recorder.errors == {}
    assert recorder.peak_wpm == 0
