"""
PPMatch - Utility Modules
"""

from .circuit_breaker import (
    CircuitBreaker,
    CircuitState,
    CircuitStats,
    RetryConfig,
    retry_with_backoff,
    get_circuit_health
)

__all__ = [
    'CircuitBreaker',
    'CircuitState',
    'CircuitStats',
    'RetryConfig',
    'retry_with_backoff',
    'get_circuit_health'
]
