"""
Shared fixtures and step definitions for BDD tests.

- runner, server, registry, context: available to all scenario files in this directory
- registry replaces the CLI's default_registry with one over the in-memory server
- no_logging: autouse, prevents log file creation during tests
- 'the server is unreachable' and 'the output contains' steps: shared across feature files
"""

import pytest
from unittest.mock import patch
from click.testing import CliRunner
from pytest_bdd import given, then, parsers

from homecare.engine.registry import build_registry
from homecare.net.errors import NetworkUnavailable


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def server(make_client):
    return make_client()


@pytest.fixture
def registry(server, dispatcher):
    registry = build_registry(server, dispatcher)
    with patch("homecare.cli.main.default_registry", return_value=registry):
        yield registry


@pytest.fixture
def context():
    """Mutable dict shared between Given/When/Then steps within a scenario."""
    return {}


@pytest.fixture(autouse=True)
def no_logging():
    with patch("homecare.cli.main.configure_logging"):
        yield


@given("the server is unreachable")
def server_unreachable(server):
    server.fail("fetch", NetworkUnavailable())
    server.fail("update", NetworkUnavailable())


@then(parsers.parse('the output contains "{text}"'))
def output_contains(context, text):
    assert text in context["result"].output, (
        f"Expected {text!r} in output:\n{context['result'].output}"
    )
