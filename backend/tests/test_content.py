import requests

from velocity.models import Difficulty
from velocity.services.race.content import (
    FALLBACK_CORPUS,
    ContentProvider,
    FallbackContentProvider,
    HttpContentProvider,
    provider_from_config,
)


class _Response:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class _Session:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, params, timeout))
        if self.error:
            raise self.error
        return self.response


def test_fallback_corpus_has_ten_distinct_sentences_per_tier():
    seen = set()
    for tier in Difficulty:
        sentences = FALLBACK_CORPUS[tier]
        assert len(sentences) >= 10
        assert all(s for s in sentences)
        assert not seen.intersection(sentences)
        seen.update(sentences)


def test_base_provider_falls_back():
    assert ContentProvider().fetch_sentences(Difficulty.EASY) == FALLBACK_CORPUS[Difficulty.EASY]


def test_http_provider_reads_list_payload():
    session = _Session(_Response(['One two.', '  ', 'Three four.']))
    provider = HttpContentProvider('http://content.test/sentences', timeout=2, session=session)
    assert provider.fetch_sentences(Difficulty.HARD) == ['One two.', 'Three four.']
    url, params, timeout = session.calls[0]
    assert params == {'difficulty': 'HARD', 'count': 15}
    assert timeout == 2


def test_http_provider_reads_wrapped_payload():
    session = _Session(_Response({'sentences': ['Go fast.']}))
    provider = HttpContentProvider('http://content.test', session=session)
    assert provider.fetch_sentences(Difficulty.EASY) == ['Go fast.']


def test_http_provider_never_raises(caplog):
    failures = [
        _Session(error=requests.ConnectionError('refused')),
        _Session(_Response([], status=503)),
        _Session(_Response(ValueError('not json'))),
        _Session(_Response({'unexpected': True})),
        _Session(_Response([])),
    ]
    for session in failures:
        provider = HttpContentProvider('http://content.test', session=session)
        assert provider.fetch_sentences(Difficulty.MEDIUM) == FALLBACK_CORPUS[Difficulty.MEDIUM]
    assert '[content-fallback]' in caplog.text


def test_provider_from_config():
    assert isinstance(provider_from_config({}), FallbackContentProvider)
    provider = provider_from_config({'CONTENT_API_URL': 'http://x', 'CONTENT_TIMEOUT_SEC': 3})
    assert isinstance(provider, HttpContentProvider)
    assert provider.timeout == 3.0
