"""Shared pytest fixtures for testing."""

from typing import AsyncGenerator, List

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport

from flow_builder.canvas import FlowEditingContext, FlowManager, TraversalEngine
from flow_builder.config import ConditionDataType, ConditionOperator, NodeType
from flow_builder.gateways import (
    InMemoryAgentGateway,
    InMemoryFlowGateway,
    LoggingNotificationSink,
)
from flow_builder.models import (
    Agent,
    AgentNodeData,
    Condition,
    DataStoreField,
    DataStoreNodeData,
    DataStoreSchema,
    DataStoreSchemaField,
    Edge,
    Flow,
    IfNodeData,
    Node,
)


FLOW_ID = "flow-1"
AGENT_ID = "agent-helper"


def make_edge(source: str, target: str, handle: str = None) -> Edge:
    """Edge with an id derived from its endpoints."""
    suffix = f"-{handle}" if handle else ""
    return Edge(id=f"{source}->{target}{suffix}", source=source, target=target, source_handle=handle)


def build_flow() -> Flow:
    """
    start -> agent-1 -> if-1 -(true)-> end
                        if-1 -(false)-> store-1 -> end
    """
    condition = Condition(
        id="cond-1",
        data_type=ConditionDataType.STRING,
        operator=ConditionOperator.CONTAINS,
        value1="{{Helper}} said yes",
        value2="yes",
    )
    return Flow(
        id=FLOW_ID,
        name="Support flow",
        nodes=[
            Node(id="start", type=NodeType.START),
            Node(id="agent-1", type=NodeType.AGENT, data=AgentNodeData(agent_id=AGENT_ID)),
            Node(
                id="if-1",
                type=NodeType.IF,
                data=IfNodeData(
                    name="Did they agree?",
                    conditions=[condition],
                    draft_conditions=[condition],
                ),
            ),
            Node(
                id="store-1",
                type=NodeType.DATA_STORE,
                data=DataStoreNodeData(
                    name="Remember answer",
                    fields=[DataStoreField(id="f-1", schema_field_id="sf-1", logic="set to no")],
                ),
            ),
            Node(id="end", type=NodeType.END),
        ],
        edges=[
            make_edge("start", "agent-1"),
            make_edge("agent-1", "if-1"),
            make_edge("if-1", "end", "true"),
            make_edge("if-1", "store-1", "false"),
            make_edge("store-1", "end"),
        ],
        data_store_schema=DataStoreSchema(
            fields=[DataStoreSchemaField(id="sf-1", name="answer")]
        ),
        response_template="Thanks for calling.",
    )


def build_agent(
    agent_id: str = AGENT_ID,
    name: str = "Helper",
    text_prompt: str = "You are a helpful assistant.",
) -> Agent:
    return Agent(
        id=agent_id,
        name=name,
        text_prompt=text_prompt,
        model_name="gpt-4o",
        api_source="openai",
    )


# =============================================================================
# Model Fixtures
# =============================================================================


@pytest.fixture
def flow() -> Flow:
    """Create a fully connected, valid flow."""
    return build_flow()


@pytest.fixture
def agent() -> Agent:
    """Create the agent referenced by the flow."""
    return build_agent()


@pytest.fixture
def agents(agent: Agent) -> List[Agent]:
    return [agent]


@pytest.fixture
def traversal_engine() -> TraversalEngine:
    return TraversalEngine(cache_size=8)


# =============================================================================
# Manager Fixtures
# =============================================================================


@pytest.fixture
def flow_gateway(flow: Flow) -> InMemoryFlowGateway:
    return InMemoryFlowGateway([flow])


@pytest.fixture
def agent_gateway(agents: List[Agent]) -> InMemoryAgentGateway:
    return InMemoryAgentGateway(agents)


@pytest.fixture
def notifications() -> LoggingNotificationSink:
    return LoggingNotificationSink()


@pytest.fixture
def context(flow_gateway, agent_gateway, notifications) -> FlowEditingContext:
    """Create an editing context over in-memory gateways."""
    return FlowEditingContext.create(flow_gateway, agent_gateway, notifications)


@pytest.fixture
def manager(context: FlowEditingContext) -> FlowManager:
    return FlowManager(context)


# =============================================================================
# API Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def app(manager: FlowManager) -> FastAPI:
    """Create test FastAPI application."""
    from flow_builder.main import create_app

    return create_app(manager)


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
