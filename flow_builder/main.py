"""
Flow Builder Service.

HTTP surface for flow graph validation, condition evaluation and agent
reference rewriting.

API Endpoints:
- Flows: create, read and update flows
- Validation: structural checks and readiness
- Evaluation: If-node conditions against variables
- Agent references: preview and rewrite after an agent rename
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse

from . import __version__
from .canvas import FlowEditingContext, FlowManager
from .config import get_settings
from .exceptions import (
    FlowNotFoundError,
    NodeNotFoundError,
    PartialRewriteError,
    PersistenceError,
)
from .gateways import InMemoryAgentGateway, InMemoryFlowGateway
from .models import (
    CreateFlowRequest,
    EvaluateNodeRequest,
    RenameReferencesRequest,
    RenameReferencesResponse,
    UpdateFlowRequest,
    ValidateFlowResponse,
)

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Service metadata
SERVICE_NAME = settings.service_name
SERVICE_VERSION = __version__
START_TIME = time.time()


def create_app(manager: Optional[FlowManager] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        manager: Flow manager to serve. Defaults to one over in-memory gateways.

    Returns:
        Configured FastAPI application
    """
    if manager is None:
        context = FlowEditingContext.create(
            InMemoryFlowGateway(), InMemoryAgentGateway(), settings=settings
        )
        manager = FlowManager(context)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        logger.info(f"Starting {SERVICE_NAME} v{SERVICE_VERSION}")
        yield
        logger.info(f"Shutting down {SERVICE_NAME}")

    app = FastAPI(
        title="Flow Builder Service",
        description="Flow graph validation, evaluation and agent reference rewriting",
        version=SERVICE_VERSION,
        docs_url="/docs" if settings.enable_docs else None,
        redoc_url="/redoc" if settings.enable_docs else None,
        lifespan=lifespan,
    )
    app.state.flow_manager = manager

    # =========================================================================
    # Error handling
    # =========================================================================

    @app.exception_handler(FlowNotFoundError)
    @app.exception_handler(NodeNotFoundError)
    async def not_found_handler(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ValueError)
    async def malformed_input_handler(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(PartialRewriteError)
    async def partial_rewrite_handler(
        request: Request, exc: PartialRewriteError
    ) -> JSONResponse:
        return JSONResponse(status_code=502, content={"detail": exc.to_dict()})

    @app.exception_handler(PersistenceError)
    async def persistence_handler(request: Request, exc: PersistenceError) -> JSONResponse:
        logger.error(f"Persistence failure: {exc}")
        return JSONResponse(status_code=502, content={"detail": str(exc)})

    # =========================================================================
    # Health
    # =========================================================================

    @app.get("/health")
    async def health_check() -> Dict[str, Any]:
        """Health check endpoint."""
        return {
            "status": "healthy",
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "uptime_seconds": time.time() - START_TIME,
        }

    # =========================================================================
    # Flows API
    # =========================================================================

    prefix = settings.api_prefix

    @app.post(f"{prefix}/flows", status_code=201)
    async def create_flow(request: CreateFlowRequest) -> Dict[str, Any]:
        """Create a flow holding only its Start and End nodes."""
        flow = await manager.create_flow(request.name, flow_id=request.id)
        return flow.to_dict()

    @app.get(f"{prefix}/flows/{{flow_id}}")
    async def get_flow(flow_id: str) -> Dict[str, Any]:
        """Get a flow by ID."""
        flow = await manager.get_flow(flow_id)
        return flow.to_dict()

    @app.put(f"{prefix}/flows/{{flow_id}}")
    async def update_flow(flow_id: str, request: UpdateFlowRequest) -> Dict[str, Any]:
        """Update a flow."""
        updates = request.model_dump(exclude_unset=True)
        flow = await manager.update(flow_id, updates)
        return flow.to_dict()

    @app.post(f"{prefix}/flows/{{flow_id}}/validate", response_model=ValidateFlowResponse)
    async def validate_flow(
        flow_id: str,
        promote: bool = Query(False, description="Allow a clean flow to become ready"),
    ) -> Dict[str, Any]:
        """Validate a flow and update its readiness."""
        flow, result = await manager.validate_flow(flow_id, promote=promote)
        return {
            "valid": not result.has_hard_errors,
            "ready_state": flow.ready_state.value,
            "errors": [i.to_dict() for i in result.errors],
            "warnings": [i.to_dict() for i in result.warnings],
            "info": [i.to_dict() for i in result.info],
        }

    @app.get(f"{prefix}/flows/{{flow_id}}/traversal")
    async def get_traversal(flow_id: str) -> Dict[str, Any]:
        """Connectivity of every node in the flow."""
        traversal = await manager.get_traversal(flow_id)
        return traversal.to_dict()

    @app.post(f"{prefix}/flows/{{flow_id}}/nodes/{{node_id}}/evaluate")
    async def evaluate_node(
        flow_id: str,
        node_id: str,
        request: EvaluateNodeRequest,
    ) -> Dict[str, Any]:
        """Evaluate an If node against the given variables."""
        evaluation = await manager.evaluate_node(flow_id, node_id, request.variables)
        return evaluation.to_dict()

    # =========================================================================
    # Agent References API
    # =========================================================================

    @app.get(f"{prefix}/flows/{{flow_id}}/agent-references")
    async def find_agent_references(
        flow_id: str,
        name: str = Query(..., min_length=1),
    ) -> Dict[str, Any]:
        """Preview the fields that reference an agent name."""
        locations = await manager.find_agent_references(flow_id, name)
        return {
            "name": name,
            "total": sum(loc.count for loc in locations),
            "references": [loc.to_dict() for loc in locations],
        }

    @app.post(
        f"{prefix}/flows/{{flow_id}}/agent-references",
        response_model=RenameReferencesResponse,
    )
    async def rename_agent_references(
        flow_id: str,
        request: RenameReferencesRequest,
    ) -> Dict[str, Any]:
        """Rewrite references after an agent rename."""
        result = await manager.update_agent_references(
            flow_id, request.old_name, request.new_name
        )
        return {
            "no_op": result.no_op,
            "total_references_updated": result.total_references_updated,
            "updated_agent_ids": [a.id for a in result.updated_agents],
            "updated_node_ids": [n.id for n in result.updated_nodes],
            "response_template_changed": result.response_template_changed,
            "updated_response_template": result.updated_response_template,
        }

    return app


app = create_app()


# =============================================================================
# Main
# =============================================================================


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "flow_builder.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
