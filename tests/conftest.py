"""Shared fixtures."""

import pytest

from helpers import EchoTool, FailingProvider, ScriptedProvider


@pytest.fixture
def scripted_provider():
    """Factory fixture: scripted_provider([...responses]) or scripted_provider(callable)."""
    return ScriptedProvider


@pytest.fixture
def failing_provider():
    return FailingProvider()


@pytest.fixture
def echo_tool():
    return EchoTool()
