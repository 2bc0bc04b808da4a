"""Quick Test: timed multiple-choice attempts with an AI tutor."""

__version__ = "0.3.0"
