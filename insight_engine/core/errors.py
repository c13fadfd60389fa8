"""Error types raised by the insight engine"""

from typing import List


class InsightEngineError(Exception):
    """Base class for engine errors"""


class GenerationUnavailable(InsightEngineError):
    """
    Both the primary and the fallback text-generation routes failed.

    Retryable. Nothing is recorded in the lineage store or the guidance
    cache when this is raised.
    """

    retryable = True

    def __init__(self, attempts: List[str]) -> None:
        self.attempts = list(attempts)
        detail = "; ".join(self.attempts) if self.attempts else "no routes attempted"
        super().__init__(f"Text generation unavailable ({detail})")
