"""
Pytest configuration for the CHIP-8 test suite.

    python -m pytest                 # everything
    python -m pytest -m "not display" # skip the pygame window tests

Tests that open a pygame window carry ``@pytest.mark.display``; they run
against SDL's dummy drivers so no real screen or audio device is needed.
"""

import os

# Must be set before pygame is first initialised in any test module.
os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
os.environ.setdefault("SDL_AUDIODRIVER", "dummy")
os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers",
        "display: tests that open a pygame window (skipped without pygame)")
