"""
SDK for AI Quota Guard.

Routes model calls through the quota engine.
"""

from .openai_client import QuotaExhausted, QuotaGuardedOpenAI

__all__ = ["QuotaExhausted", "QuotaGuardedOpenAI"]
