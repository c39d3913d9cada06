"""Exceptions raised inside the try-on pipeline.

None of these reach the end user directly: the pipeline boundary turns every
failure into a `ProcessingResult` through the `ResultClassifier`.
"""


class TryOnError(Exception):
    """Base class for pipeline errors."""


class MissingCredentialsError(TryOnError):
    """No API key could be resolved for the generation call."""

    def __init__(self, message: str = "No Gemini API key configured"):
        super().__init__(message)


class GarmentImageUnavailable(TryOnError):
    """Every retrieval strategy failed for a garment image URL."""

    def __init__(self, url: str, attempts: list[str] | None = None):
        self.url = url
        self.attempts = attempts or []
        detail = "; ".join(self.attempts) if self.attempts else "no strategy succeeded"
        super().__init__(f"Garment image unavailable: {url} ({detail})")


class GenerationTimeout(TryOnError, TimeoutError):
    """The generation call did not settle before its deadline."""

    def __init__(self, deadline: float):
        self.deadline = deadline
        super().__init__(f"Generation timed out after {deadline:.0f}s")


class InsufficientCreditsError(TryOnError):
    """The boutique has no try-on credits left."""


class InvalidTransition(TryOnError):
    """A session operation was requested from a state that does not allow it."""

    def __init__(self, operation: str, state: str):
        self.operation = operation
        self.state = state
        super().__init__(f"Cannot {operation} while session is {state}")
