# test_imports.py
import importlib

import pytest


@pytest.mark.parametrize("module", [
    "ai_quota_guard.core.registry",
    "ai_quota_guard.core.selector",
    "ai_quota_guard.core.limiter",
    "ai_quota_guard.storage.repository",
    "ai_quota_guard.config.loader",
    "ai_quota_guard.sdk",
    "ai_quota_guard.cli.main",
])
def test_module_imports(module):
    assert importlib.import_module(module) is not None


def test_sdk_exports():
    from ai_quota_guard.sdk import QuotaExhausted, QuotaGuardedOpenAI
    assert issubclass(QuotaExhausted, Exception)
    assert callable(QuotaGuardedOpenAI)
