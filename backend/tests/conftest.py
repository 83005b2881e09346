import os
from datetime import datetime
from unittest.mock import AsyncMock

import pytest
from dotenv import load_dotenv
from fastapi.testclient import TestClient

# Load the test environment FIRST, before any botrix imports, so that the
# module-level settings instance is built from it.
load_dotenv(dotenv_path=os.path.join(os.path.dirname(__file__), "..", ".env.test"), override=True)

from botrix.main import app  # noqa: E402
from botrix.models.flow import BotFlow, FlowGraph  # noqa: E402
from botrix.utils.rate_limiter import webhook_rate_limiter  # noqa: E402


def make_graph(nodes, connections=()):
    """Builds a FlowGraph from wire-format (camelCase) dicts."""
    return FlowGraph.model_validate({"nodes": list(nodes), "connections": list(connections)})


def node(node_id, node_type="message", title=None, content="", **data):
    return {
        "id": node_id,
        "type": node_type,
        "position": {"x": 0, "y": 0},
        "data": {"title": node_id.title() if title is None else title, "content": content, **data},
    }


def edge(source, target, conn_id=None):
    return {"id": conn_id or f"{source}-{target}", "source": source, "target": target}


def make_stored_flow(graph, bot_id="bot-1", version=1, is_active=False):
    """A BotFlow as the flow service returns it after loading it from MongoDB."""
    now = datetime(2026, 1, 1, 12, 0, 0)
    return BotFlow(
        id="65f0c0ffee0000000000000%d" % version,
        bot_id=bot_id,
        nodes=graph.nodes,
        connections=graph.connections,
        variables=graph.variables,
        is_active=is_active,
        version=version,
        created_at=now,
        updated_at=now,
    )


@pytest.fixture
def greeting_flow():
    return make_graph(
        [
            node("start", "input", content="Hi {{name}}", variable="name"),
            node("greet", "message", content="Nice to meet you, {{name}}!"),
        ],
        [edge("start", "greet")],
    )


@pytest.fixture(autouse=True)
def reset_webhook_rate_limits():
    webhook_rate_limiter.reset()
    yield
    webhook_rate_limiter.reset()


@pytest.fixture(scope="function")
def test_client(mocker):
    """
    Provides a TestClient for API integration tests.
    Startup does not connect to MongoDB and shutdown keeps the shared HTTP client open.
    """
    mocker.patch("botrix.utils.lifecycle.db_service.connect", new_callable=AsyncMock)
    mocker.patch("botrix.utils.lifecycle.flow_service.close", new_callable=AsyncMock)

    with TestClient(app) as client:
        yield client
