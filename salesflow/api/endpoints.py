"""FastAPI REST endpoints for the sales workflow orchestrator."""

from datetime import datetime
from typing import Any, Dict, List, NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from ..core.capabilities import CapabilityRegistry
from ..core.exceptions import OrchestratorError, create_error_response
from ..core.logging import get_logger
from ..core.middleware import status_code_for_error
from ..core.orchestrator import WorkflowOrchestrator
from ..models.core import (
    DomainEvent,
    ExecutionStatusEnum,
    WorkflowDefinition,
    WorkflowExecution,
    WorkflowSummary,
)

logger = get_logger(__name__)

# Create router
router = APIRouter(prefix="/api/v1", tags=["workflows"])

# Global instances (initialized by the application factory)
_orchestrator: Optional[WorkflowOrchestrator] = None


def init_dependencies(orchestrator: WorkflowOrchestrator):
    """Initialize the global dependencies."""
    global _orchestrator
    _orchestrator = orchestrator


def get_orchestrator() -> WorkflowOrchestrator:
    """Dependency to get the orchestrator."""
    if _orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Workflow orchestrator not initialized"
        )
    return _orchestrator


def get_capabilities(orchestrator: WorkflowOrchestrator = Depends(get_orchestrator)) -> CapabilityRegistry:
    """Dependency to get the capability registry."""
    return orchestrator.capabilities


# Request/Response models
class RegisterWorkflowResponse(BaseModel):
    """Response model for workflow registration."""
    workflow_id: str = Field(..., description="Id of the registered workflow")
    message: str = Field(..., description="Success message")
    validation_warnings: List[str] = Field(default_factory=list, description="Validation warnings")


class StartWorkflowRequest(BaseModel):
    """Request model for starting a workflow manually."""
    context: Dict[str, Any] = Field(default_factory=dict, description="Initial execution context")
    triggered_by: Optional[str] = Field(None, description="Caller recorded as the trigger")


class StartWorkflowResponse(BaseModel):
    """Response model for a started workflow."""
    execution_id: str = Field(..., description="Id of the new execution")
    workflow_id: str = Field(..., description="Id of the started workflow")
    status: str = Field(..., description="Initial execution status")
    message: str = Field(..., description="Success message")


class PublishEventRequest(BaseModel):
    """Domain event submitted for trigger matching."""
    type: str = Field(..., description="Event type, e.g. lead.created")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Event payload")


class PublishEventResponse(BaseModel):
    """Executions started by an event."""
    event_type: str = Field(..., description="Type of the handled event")
    started_executions: List[str] = Field(default_factory=list, description="Ids of started executions")


class ErrorResponse(BaseModel):
    """Standard error response model."""
    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")


def _raise_http_error(error: Exception, action: str) -> NoReturn:
    """Translate an error raised while handling a request into an HTTPException."""
    if isinstance(error, OrchestratorError):
        logger.warning(f"Orchestrator error while trying to {action}: {error.message}")
        raise HTTPException(
            status_code=status_code_for_error(error),
            detail=create_error_response(error)
        )

    logger.error(f"Unexpected error while trying to {action}: {str(error)}", exc_info=True)
    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={
            "error": "InternalError",
            "message": f"An unexpected error occurred while trying to {action}",
            "details": {"original_error": str(error)},
            "timestamp": datetime.utcnow().isoformat()
        }
    )


# Workflow definitions

@router.post(
    "/workflows",
    response_model=RegisterWorkflowResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a workflow definition",
    description="Validate and register a workflow definition, replacing any definition with the same id"
)
async def register_workflow(
    definition: WorkflowDefinition,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator)
) -> RegisterWorkflowResponse:
    """
    Register a workflow definition.

    Raises:
        HTTPException: 400 if the definition is invalid
    """
    try:
        validation_result = orchestrator.registry.validate_definition(definition)
        orchestrator.register_workflow(definition)
        return RegisterWorkflowResponse(
            workflow_id=definition.id,
            message=f"Workflow '{definition.name}' registered successfully",
            validation_warnings=validation_result.warnings
        )
    except Exception as e:
        _raise_http_error(e, f"register workflow {definition.id}")


@router.get(
    "/workflows",
    response_model=List[WorkflowSummary],
    summary="List registered workflows"
)
async def list_workflows(
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator)
) -> List[WorkflowSummary]:
    return orchestrator.registry.list_summaries()


@router.get(
    "/workflows/{workflow_id}",
    response_model=WorkflowDefinition,
    summary="Get a workflow definition"
)
async def get_workflow(
    workflow_id: str,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator)
) -> WorkflowDefinition:
    try:
        return orchestrator.registry.get(workflow_id)
    except Exception as e:
        _raise_http_error(e, f"get workflow {workflow_id}")


@router.delete(
    "/workflows/{workflow_id}",
    summary="Unregister a workflow definition",
    description="Running executions keep the definition they were started with"
)
async def unregister_workflow(
    workflow_id: str,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator)
) -> Dict[str, str]:
    try:
        orchestrator.unregister_workflow(workflow_id)
        return {"message": f"Workflow '{workflow_id}' unregistered successfully"}
    except Exception as e:
        _raise_http_error(e, f"unregister workflow {workflow_id}")


@router.post(
    "/workflows/{workflow_id}/start",
    response_model=StartWorkflowResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start a workflow manually"
)
async def start_workflow(
    workflow_id: str,
    request: StartWorkflowRequest,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator)
) -> StartWorkflowResponse:
    """
    Start a new execution; it runs in the background.

    Raises:
        HTTPException: 404 if the workflow is unknown, 400 if its plan is invalid
    """
    try:
        execution_id = await orchestrator.start_workflow(
            workflow_id, request.context, triggered_by=request.triggered_by
        )
        logger.info(f"Started workflow {workflow_id} as execution {execution_id}")
        return StartWorkflowResponse(
            execution_id=execution_id,
            workflow_id=workflow_id,
            status=ExecutionStatusEnum.RUNNING.value,
            message=f"Workflow '{workflow_id}' started"
        )
    except Exception as e:
        _raise_http_error(e, f"start workflow {workflow_id}")


@router.get(
    "/workflows/{workflow_id}/history",
    response_model=List[WorkflowExecution],
    summary="Execution history of a workflow",
    description="Stored executions of the workflow, most recently started first"
)
async def get_workflow_history(
    workflow_id: str,
    limit: Optional[int] = Query(None, ge=1, le=1000, description="Maximum number of executions"),
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator)
) -> List[WorkflowExecution]:
    try:
        return await orchestrator.get_workflow_history(workflow_id, limit)
    except Exception as e:
        _raise_http_error(e, f"get history of workflow {workflow_id}")


# Events

@router.post(
    "/events",
    response_model=PublishEventResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Submit a domain event",
    description="Start every registered workflow whose trigger matches the event"
)
async def publish_event(
    request: PublishEventRequest,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator)
) -> PublishEventResponse:
    try:
        event = DomainEvent(type=request.type, payload=request.payload)
        started = await orchestrator.handle_event(event)
        return PublishEventResponse(event_type=event.type, started_executions=started)
    except Exception as e:
        _raise_http_error(e, f"handle event {request.type}")


# Executions

@router.get(
    "/executions",
    response_model=List[WorkflowExecution],
    summary="List executions held in memory"
)
async def list_executions(
    status_filter: Optional[ExecutionStatusEnum] = Query(None, alias="status", description="Only this status"),
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator)
) -> List[WorkflowExecution]:
    executions = orchestrator.get_active_workflows()
    if status_filter is not None:
        executions = [e for e in executions if e.status == status_filter]
    return executions


@router.get(
    "/executions/{execution_id}",
    response_model=WorkflowExecution,
    summary="Get execution status"
)
async def get_execution(
    execution_id: str,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator)
) -> WorkflowExecution:
    try:
        execution = await orchestrator.get_workflow_status(execution_id)
    except Exception as e:
        _raise_http_error(e, f"get execution {execution_id}")

    if execution is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "error": "NotFoundError",
                "message": f"Execution '{execution_id}' not found",
                "details": {"resource_type": "execution"},
                "timestamp": datetime.utcnow().isoformat()
            }
        )
    return execution


@router.post("/executions/{execution_id}/pause", response_model=WorkflowExecution, summary="Pause an execution")
async def pause_execution(
    execution_id: str,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator)
) -> WorkflowExecution:
    try:
        return await orchestrator.pause_workflow(execution_id)
    except Exception as e:
        _raise_http_error(e, f"pause execution {execution_id}")


@router.post("/executions/{execution_id}/resume", response_model=WorkflowExecution, summary="Resume an execution")
async def resume_execution(
    execution_id: str,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator)
) -> WorkflowExecution:
    try:
        return await orchestrator.resume_workflow(execution_id)
    except Exception as e:
        _raise_http_error(e, f"resume execution {execution_id}")


@router.post("/executions/{execution_id}/cancel", response_model=WorkflowExecution, summary="Cancel an execution")
async def cancel_execution(
    execution_id: str,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator)
) -> WorkflowExecution:
    try:
        return await orchestrator.cancel_workflow(execution_id)
    except Exception as e:
        _raise_http_error(e, f"cancel execution {execution_id}")


# Agents

@router.get("/agents", summary="List registered agents and their capabilities")
async def list_agents(
    capabilities: CapabilityRegistry = Depends(get_capabilities)
) -> List[Dict[str, Any]]:
    return capabilities.list_agents()
