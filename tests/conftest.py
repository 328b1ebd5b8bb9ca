"""Pytest configuration and fixtures for recipe-replay tests."""

import time

import pytest

from fakes import FakeBrowser, FakePage


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: Integration tests with a real browser but mocked LLM")
    config.addinivalue_line("markers", "slow: Tests that take longer to run")


@pytest.fixture(autouse=True)
def utc_timezone(monkeypatch):
    """Pin the local timezone so calendar-date templates are deterministic."""
    monkeypatch.setenv("TZ", "UTC")
    if hasattr(time, "tzset"):
        time.tzset()
    yield
    monkeypatch.undo()
    if hasattr(time, "tzset"):
        time.tzset()


@pytest.fixture
def page() -> FakePage:
    return FakePage()


@pytest.fixture
def browser(page) -> FakeBrowser:
    return FakeBrowser(page=page)
