class ReviewActionError(Exception):
    """Base exception for review action errors."""


class ConfigurationError(ReviewActionError):
    """Raised for missing credentials or an unusable configuration file."""


class PullRequestContextError(ReviewActionError):
    """Raised when the run is not attached to a pull request."""
