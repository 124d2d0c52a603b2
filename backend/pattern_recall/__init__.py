"""Pattern Recall: SM-2 spaced repetition for algorithm problem patterns."""

__version__ = "0.1.0"
