"""Custom exceptions for the PPMatch recommendation core."""


class PPMatchException(Exception):
    """Base exception for all PPMatch errors."""
    retryable = False


# Transient: backend timeouts and rate limits, retried then surfaced

class TransientError(PPMatchException):
    """Temporary failure; the caller may retry."""
    retryable = True


class EmbeddingError(TransientError):
    """Embedding backend failed after retries."""
    pass


class EmbeddingTimeoutError(EmbeddingError):
    """Embedding request exceeded its timeout."""
    pass


class RateLimitError(TransientError):
    """Backend rate limit hit."""
    pass


class CompletionError(TransientError):
    """Completion backend failed after retries."""
    pass


class ServiceUnavailableError(TransientError):
    """External service is not reachable."""
    pass


class CircuitOpenError(ServiceUnavailableError):
    """Circuit breaker is open; failing fast."""
    pass


class QueryEmbeddingPendingError(TransientError):
    """Free-text query embedding is still in flight; try again."""
    pass


# Data: malformed input for one record; skip dependent work and continue

class DataError(PPMatchException):
    """Malformed or missing input data."""
    pass


class EmptyContentError(DataError):
    """Unified text is empty."""
    pass


class InvalidContractValueError(DataError):
    """Contract value is missing or non-numeric."""
    pass


class RecordNotFoundError(DataError):
    """Unknown PP record id."""
    pass


class ProjectContextNotFoundError(DataError):
    """Project has no solicitation requirements available."""
    pass


# Configuration: rejected at validation, never silently corrected

class ConfigurationError(PPMatchException):
    """Invalid configuration."""
    pass


class InvalidWeightsError(ConfigurationError):
    """Search weights outside [0, 1] or not summing to 1.0."""
    pass


class UnknownConfigurationError(ConfigurationError):
    """Named search configuration does not exist."""
    pass


# Consistency: generation bookkeeping

class ConsistencyError(PPMatchException):
    """Generation or snapshot mismatch."""
    pass


class StaleGenerationError(ConsistencyError):
    """Write targets a generation that is no longer current."""
    pass


# Taxonomy

class TaxonomyError(PPMatchException):
    """Base exception for taxonomy errors."""
    pass


class InvalidTransitionError(TaxonomyError):
    """Approval state change not allowed."""
    pass


class UnknownTechnologyError(TaxonomyError):
    """Technology id not in the taxonomy."""
    pass


# Ranking

class RankingError(PPMatchException):
    """Irrecoverable ranking failure; no partial results are returned."""
    pass
