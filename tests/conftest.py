# conftest.py - Shared pytest fixtures for all tests
"""Shared pytest fixtures for the flowguard test suite.

Provides:
- The bundled node-type catalog and services built on it
- A node factory for compact workflow documents
- A clean three-node workflow (webhook -> HTTP request -> set)

Usage:
    Fixtures are discovered implicitly by pytest; build variations of the
    sample workflow with ``copy.deepcopy(sample_workflow)``.
"""

from __future__ import annotations

from typing import Any, Callable

import pytest

from flowguard.core.catalog import InMemoryNodeTypeRepository, load_default_catalog, schema_cache
from flowguard.core.config_validator import NodeConfigValidator
from flowguard.core.diff_engine import DiffEngine
from flowguard.core.graph_validator import WorkflowGraphValidator
from flowguard.core.service import WorkflowService

NodeFactory = Callable[..., dict[str, Any]]


# =============================================================================
# Catalog Fixtures
# =============================================================================


@pytest.fixture(scope="session")
def catalog() -> InMemoryNodeTypeRepository:
    """The bundled YAML catalog, loaded once per session."""
    return load_default_catalog()


@pytest.fixture(autouse=True)
def clear_schema_cache():
    """Keep cached schemas from leaking between tests."""
    schema_cache.clear()
    yield
    schema_cache.clear()


@pytest.fixture
def graph_validator(catalog) -> WorkflowGraphValidator:
    return WorkflowGraphValidator(catalog)


@pytest.fixture
def config_validator() -> NodeConfigValidator:
    return NodeConfigValidator()


@pytest.fixture
def engine() -> DiffEngine:
    """Diff engine without a catalog (no output cardinality checks)."""
    return DiffEngine()


@pytest.fixture
def service(catalog) -> WorkflowService:
    return WorkflowService(repository=catalog)


# =============================================================================
# Workflow Document Fixtures
# =============================================================================


@pytest.fixture
def make_node() -> NodeFactory:
    """Build a node dict in the workflow wire format.

    Example:
        def test_something(make_node):
            node = make_node("Wait", "wait", typeVersion=1.1)
    """

    def factory(
        name: str,
        short_type: str,
        parameters: dict[str, Any] | None = None,
        **attrs: Any,
    ) -> dict[str, Any]:
        node = {
            "id": attrs.pop("id", f"id-{name.lower().replace(' ', '-')}"),
            "name": name,
            "type": short_type if "." in short_type else f"n8n-nodes-base.{short_type}",
            "typeVersion": attrs.pop("typeVersion", 1),
            "position": attrs.pop("position", [0, 0]),
            "parameters": parameters or {},
        }
        node.update(attrs)
        return node

    return factory


def _link(*targets: str, index: int = 0) -> list[dict[str, Any]]:
    return [{"node": t, "type": "main", "index": index} for t in targets]


@pytest.fixture
def link() -> Callable[..., list[dict[str, Any]]]:
    """Build the targets of one output slot: ``link("A", "B")``."""
    return _link


@pytest.fixture
def sample_workflow(make_node) -> dict[str, Any]:
    """A valid webhook -> HTTP request -> set workflow."""
    return {
        "name": "Order sync",
        "nodes": [
            make_node(
                "Webhook",
                "webhook",
                {"path": "orders", "httpMethod": "POST"},
                typeVersion=2,
            ),
            make_node(
                "Fetch Order",
                "httpRequest",
                {
                    "method": "GET",
                    "url": "=https://api.example.com/orders/{{ $json.body.id }}",
                },
                typeVersion=4.2,
                position=[200, 0],
                onError="continueRegularOutput",
            ),
            make_node(
                "Set Status",
                "set",
                {
                    "mode": "manual",
                    "assignments": {
                        "assignments": [
                            {"name": "status", "value": "={{ $json.status }}", "type": "string"}
                        ]
                    },
                },
                typeVersion=3.4,
                position=[400, 0],
            ),
        ],
        "connections": {
            "Webhook": {"main": [_link("Fetch Order")]},
            "Fetch Order": {"main": [_link("Set Status")]},
        },
        "settings": {"executionOrder": "v1"},
        "tags": ["orders"],
    }


@pytest.fixture
def trigger_node(make_node) -> dict[str, Any]:
    return make_node("Start", "manualTrigger", position=[-200, 0])
