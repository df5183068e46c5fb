"""Race domain services: metrics, analysis, content, timers and peer sync.

This package holds the non-visual race engine. HTTP routes and socket
handlers import from here, keeping transport concerns separated from the
core race mechanics.
"""

from .controller import GameSessionController, RaceConfig  # noqa: F401
