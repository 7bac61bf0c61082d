"""Shared test fixtures for policyprobe."""

from __future__ import annotations

import pytest

from helpers import FakeFilesystem, FakeProvider, FakeRunner, bootstrap_runner

from policyprobe.config import HarnessConfig


@pytest.fixture
def fake_runner() -> FakeRunner:
    return bootstrap_runner()


@pytest.fixture
def fake_fs() -> FakeFilesystem:
    return FakeFilesystem()


@pytest.fixture
def fake_provider(fake_runner: FakeRunner, fake_fs: FakeFilesystem) -> FakeProvider:
    return FakeProvider(fake_runner, fake_fs)


@pytest.fixture
def fast_config() -> HarnessConfig:
    """Config with short timeouts and no session settle delay."""
    return HarnessConfig(
        readiness_timeout=0.2,
        readiness_interval=0.01,
        session_settle=0,
    )
