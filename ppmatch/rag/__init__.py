"""
PPMatch - Generation Layer
==========================

Components:
- completion.py: Claude completion for capability narratives
- context.py: token estimation and context-budget selection
"""

from .completion import AnthropicCompleter, TextCompleter
from .context import ContextBudgetSelector, ContextSelection, estimate_tokens

__all__ = [
    'AnthropicCompleter',
    'TextCompleter',
    'ContextBudgetSelector',
    'ContextSelection',
    'estimate_tokens',
]
