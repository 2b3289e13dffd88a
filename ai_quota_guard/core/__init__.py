"""
Core modules for AI Quota Guard.

This package contains the model registry, the quota and cooldown selector,
and the per-request limiter that ties them to usage storage.
"""
