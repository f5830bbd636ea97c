"""Exception hierarchy for the gate engine."""

from __future__ import annotations


class GateError(Exception):
    """Base class for all gate failures surfaced to the run's exit status."""


class CaptureError(GateError):
    """Navigation, timeout or rendering failure while capturing a screen."""


class ComparisonError(GateError):
    """A screen's baseline and actual capture could not be compared."""


class DimensionMismatchError(ComparisonError):
    def __init__(self, expected: tuple[int, int], actual: tuple[int, int]):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Image dimensions mismatch: expected({expected[0]}x{expected[1]}) "
            f"vs actual({actual[0]}x{actual[1]})"
        )


class ImageReadError(ComparisonError):
    def __init__(self, path: str, reason: str):
        self.path = path
        super().__init__(f"Could not read image {path}: {reason}")


class PolicyError(GateError):
    """Malformed policy or a screen configuration the policy rejects.

    Raised before any capture starts; every screen depends on policy, so the
    whole run aborts.
    """


class EvidenceError(GateError):
    """The evidence pack could not be assembled completely."""


class IntegrationError(GateError):
    """A call to the code-review system failed."""


class GitHubAPIError(IntegrationError):
    def __init__(self, message: str, status_code: int | None = None, operation: str = ""):
        self.status_code = status_code
        self.operation = operation
        super().__init__(message)


class GitHubPermissionError(GitHubAPIError):
    pass


class GitHubNotFoundError(GitHubAPIError):
    pass


class BaselineError(GateError):
    """Stored baselines are missing, unreadable or inconsistent."""


class ConfigError(GateError):
    """The gate configuration file is unreadable or invalid."""
