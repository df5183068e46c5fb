import logging
from typing import Dict, List, Optional

import requests

from velocity.errors import ContentFetchError
from velocity.models import Difficulty

logger = logging.getLogger('velocity.race.content')

SENTENCES_PER_REQUEST = 15

FALLBACK_CORPUS: Dict[Difficulty, List[str]] = {
    Difficulty.EASY: [
        "The car is fast.",
        "I like to drive.",
        "The road is long.",
        "Green light means go.",
        "Watch out for the turn.",
        "Keep your eyes open.",
        "Steer with both hands.",
        "The engine is loud.",
        "Race to the finish line.",
        "Do not crash the car.",
    ],
    Difficulty.MEDIUM: [
        "The neon lights blurred as the speed increased.",
        "Driving at night requires focus and calm nerves.",
        "The engine roared like a beast awakening from slumber.",
        "Every turn brings a new challenge to the driver.",
        "Rain slicked the asphalt, making traction difficult.",
        "The champion racer never looks back at the competition.",
        "Shift gears at the perfect moment for maximum power.",
        "The scenery flew by in a wash of green and blue.",
        "Victory awaits those who can master their machine.",
        "Silence filled the cabin as the finish line approached.",
    ],
    Difficulty.HARD: [
        "Navigating the treacherous mountain pass requires not just skill, but an intuitive understanding of physics.",
        "The aerodynamic chassis sliced through the air, minimizing drag and maximizing fuel efficiency.",
        "As the sun dipped below the horizon, the golden light reflected blindingly off the polished chrome.",
        "Adrenaline coursed through his veins as the speedometer climbed higher into the red zone.",
        "The relationship between a driver and their car is a symbiotic bond forged in high-speed pursuit.",
        "Complex mechanical systems worked in harmony to propel the vehicle forward at breakneck speeds.",
        "Suddenly, the rear tires lost their grip, sending the vehicle into a controlled drift across the apex.",
        "Precision engineering is the hallmark of modern automotive design, blending art with raw power.",
        "The crowd's roar was drowned out by the thunderous symphony of twelve cylinders firing in unison.",
        "To hesitate for even a fraction of a second is to concede defeat in the world of professional racing.",
    ],
    Difficulty.EXPERT: [
        "The juxtaposition of the serene landscape against the violent mechanical fury of the engine created a surreal, almost cinematic experience.",
        "Quantum mechanics suggests that the observer affects the observed, much like how a driver's anxiety can seemingly alter the behavior of the machine.",
        "Navigating the labyrinthine streets of the cybernetic metropolis required a neural link directly to the vehicle's navigation mainframe.",
        "The visceral sensation of acceleration is merely the body's interpretation of increasing velocity overcoming inertia.",
        "In the annals of motorsport history, few have dared to challenge the theoretical limits of friction and gravity on such a perilous track.",
        "The chaotic turbulence of the wake created by the leading vehicle made overtaking a maneuver fraught with catastrophic potential.",
        "Synthesizing the data from the heads-up display, the pilot made a split-second calculation that would determine the outcome of the championship.",
        "Beneath the veneer of technological sophistication lies the primal urge to conquer distance and time through sheer mechanical will.",
        "The iridescent shimmer of the force field acted as a barrier against the abrasive dust of the Martian wasteland.",
        "Only through the rigorous application of discipline and reflex can one hope to transcend the limitations of human reaction time.",
    ],
}


def fallback_sentences(difficulty) -> List[str]:
    try:
        tier = Difficulty.parse(difficulty)
    except ValueError:
        tier = Difficulty.MEDIUM
    return list(FALLBACK_CORPUS[tier])


class ContentProvider:
    """Supplies the ordered sentence list for a race.

    ``fetch_sentences`` never raises: any ContentFetchError from ``_fetch``
    is logged and the static corpus for the tier is returned instead.
    """

    def fetch_sentences(self, difficulty: Difficulty) -> List[str]:
        try:
            sentences = [s.strip() for s in self._fetch(difficulty) if isinstance(s, str) and s.strip()]
            if not sentences:
                raise ContentFetchError('no sentences returned')
            return sentences
        except ContentFetchError as exc:
            logger.warning(f"[content-fallback] difficulty={getattr(difficulty, 'value', difficulty)} reason={exc}")
            return fallback_sentences(difficulty)

    def _fetch(self, difficulty: Difficulty) -> List[str]:
        raise ContentFetchError('no remote content source configured')


class FallbackContentProvider(ContentProvider):

    def fetch_sentences(self, difficulty: Difficulty) -> List[str]:
        return fallback_sentences(difficulty)


class HttpContentProvider(ContentProvider):
    """Fetches sentences from a JSON endpoint.

    The endpoint is called as ``GET <url>?difficulty=EASY&count=15`` and may
    answer with either a JSON list of strings or ``{"sentences": [...]}``.
    """

    def __init__(self, url: str, timeout: float = 5.0, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def _fetch(self, difficulty: Difficulty) -> List[str]:
        params = {'difficulty': Difficulty.parse(difficulty).value, 'count': SENTENCES_PER_REQUEST}
        try:
            response = self.session.get(self.url, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise ContentFetchError(str(exc)) from exc
        if isinstance(data, dict):
            data = data.get('sentences')
        if not isinstance(data, list):
            raise ContentFetchError('unexpected payload shape')
        return data


def provider_from_config(config) -> ContentProvider:
    url = config.get('CONTENT_API_URL')
    if url:
        return HttpContentProvider(url, timeout=float(config.get('CONTENT_TIMEOUT_SEC', 5)))
    return FallbackContentProvider()
