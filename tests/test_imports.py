"""
Smoke test that the public modules import.
"""

import importlib

import pytest


@pytest.mark.parametrize("module", [
    "prompt_master.cli.main",
    "prompt_master.config.loader",
    "prompt_master.config.log_setup",
    "prompt_master.core.admin",
    "prompt_master.core.auth",
    "prompt_master.core.container",
    "prompt_master.core.generation",
    "prompt_master.core.rate_limiter",
    "prompt_master.core.validation",
    "prompt_master.sdk",
    "prompt_master.storage.local",
    "prompt_master.storage.repository",
    "prompt_master.storage.session",
])
def test_module_imports(module):
    assert importlib.import_module(module) is not None
