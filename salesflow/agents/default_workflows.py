"""Bundled sales workflows."""

from typing import Any, Dict, List

from ..core.logging import get_logger
from ..core.registry import WorkflowDefinitionRegistry
from ..models.core import WorkflowDefinition

logger = get_logger(__name__)


HIGH_VALUE_LEAD_PROCESSING: Dict[str, Any] = {
    "id": "high-value-lead-processing",
    "name": "High-Value Lead Processing",
    "description": "Automated processing for high-value leads including scoring, personalization, and outreach",
    "version": "1.0.0",
    "triggers": [
        {"event": "lead.created", "conditions": {"leadScore": {"gte": 80}}},
        {"event": "lead.high_value_detected"},
    ],
    "steps": [
        {
            "id": "enrich-lead",
            "name": "Enrich Lead Data",
            "agent": "lead-scoring",
            "action": "enrichLead",
            "timeout": 30,
            "retryPolicy": {"maxRetries": 2, "backoffSeconds": 1.0},
        },
        {
            "id": "analyze-fit",
            "name": "Analyze Technical & Business Fit",
            "agent": "lead-scoring",
            "action": "analyzeFit",
            "dependsOn": ["enrich-lead"],
            "timeout": 15,
        },
        {
            "id": "create-email-sequence",
            "name": "Create Personalized Email Sequence",
            "agent": "email",
            "action": "createEmailSequence",
            "dependsOn": ["analyze-fit"],
            "timeout": 20,
            "parameters": {"sequenceType": "high-value-prospect", "personalizationLevel": "high"},
        },
        {
            "id": "update-forecast",
            "name": "Update Pipeline Forecast",
            "agent": "forecasting",
            "action": "updatePipelineForecast",
            "dependsOn": ["analyze-fit"],
            "timeout": 10,
        },
    ],
    "errorHandling": {
        "onStepFailure": "continue",
        "onCriticalFailure": "stop",
        "notificationChannels": ["sales-ops", "engineering"],
    },
}

CALL_ANALYSIS_WORKFLOW: Dict[str, Any] = {
    "id": "call-analysis-workflow",
    "name": "Sales Call Analysis & Follow-up",
    "description": "Process call recordings, generate insights, and trigger follow-up actions",
    "version": "1.0.0",
    "triggers": [{"event": "call.analysis_completed"}],
    "steps": [
        {
            "id": "extract-insights",
            "name": "Extract Call Insights",
            "agent": "conversation",
            "action": "generateCallSummary",
            "timeout": 45,
        },
        {
            "id": "update-lead-score",
            "name": "Update Lead Score Based on Call",
            "agent": "lead-scoring",
            "action": "updateScoreFromCall",
            "dependsOn": ["extract-insights"],
            "timeout": 15,
        },
        {
            "id": "trigger-follow-up",
            "name": "Trigger Follow-up Sequence",
            "agent": "email",
            "action": "triggerFollowUpSequence",
            "dependsOn": ["extract-insights"],
            "timeout": 20,
            "conditions": {"callOutcome": "positive", "followUpRequired": True},
        },
        {
            "id": "update-deal-probability",
            "name": "Update Deal Probability",
            "agent": "forecasting",
            "action": "analyzeDealProbability",
            "dependsOn": ["extract-insights"],
            "timeout": 25,
        },
    ],
    "errorHandling": {"onStepFailure": "continue", "onCriticalFailure": "continue"},
}

BUYING_SIGNAL_RESPONSE: Dict[str, Any] = {
    "id": "buying-signal-response",
    "name": "Buying Signal Response",
    "description": "Immediate response to strong buying signals detected in conversations or emails",
    "version": "1.0.0",
    "triggers": [{"event": "buying_signal.detected", "conditions": {"strength": {"gte": 0.7}}}],
    "steps": [
        {
            "id": "escalate-opportunity",
            "name": "Escalate to Sales Manager",
            "agent": "conversation",
            "action": "escalateOpportunity",
            "timeout": 5,
            "priority": "urgent",
        },
        {
            "id": "pause-email-sequences",
            "name": "Pause Automated Sequences",
            "agent": "email",
            "action": "pauseSequence",
            "timeout": 5,
        },
        {
            "id": "schedule-demo",
            "name": "Auto-Schedule Demo",
            "agent": "email",
            "action": "scheduleDemo",
            "dependsOn": ["escalate-opportunity"],
            "timeout": 15,
            "conditions": {"autoSchedulingEnabled": True, "availableSlots": True},
        },
        {
            "id": "update-forecast-urgency",
            "name": "Update Forecast with Urgency",
            "agent": "forecasting",
            "action": "updateDealUrgency",
            "timeout": 10,
        },
    ],
    "errorHandling": {"onStepFailure": "continue", "onCriticalFailure": "continue"},
}

WEEKLY_FORECAST_UPDATE: Dict[str, Any] = {
    "id": "weekly-forecast-update",
    "name": "Weekly Forecast Update",
    "description": "Comprehensive weekly forecast generation and distribution",
    "version": "1.0.0",
    "triggers": [{"event": "schedule.weekly", "conditions": {"day": "monday", "hour": 9}}],
    "steps": [
        {
            "id": "generate-forecast",
            "name": "Generate Weekly Forecast",
            "agent": "forecasting",
            "action": "generateRevenueForecast",
            "timeout": 120,
            "parameters": {"timeRange": "next_quarter", "includeScenarios": True, "confidenceIntervals": True},
        },
        {
            "id": "analyze-pipeline-health",
            "name": "Analyze Pipeline Health",
            "agent": "forecasting",
            "action": "analyzePipelineHealth",
            "dependsOn": ["generate-forecast"],
            "timeout": 60,
        },
        {
            "id": "identify-at-risk-deals",
            "name": "Identify At-Risk Deals",
            "agent": "forecasting",
            "action": "identifyAtRiskDeals",
            "dependsOn": ["analyze-pipeline-health"],
            "timeout": 30,
        },
        {
            "id": "send-forecast-report",
            "name": "Send Forecast Report",
            "agent": "email",
            "action": "sendForecastReport",
            "dependsOn": ["identify-at-risk-deals"],
            "timeout": 20,
        },
    ],
    "errorHandling": {"onStepFailure": "continue", "onCriticalFailure": "stop"},
}

DEFAULT_WORKFLOWS = [
    HIGH_VALUE_LEAD_PROCESSING,
    CALL_ANALYSIS_WORKFLOW,
    BUYING_SIGNAL_RESPONSE,
    WEEKLY_FORECAST_UPDATE,
]


def default_workflow_definitions() -> List[WorkflowDefinition]:
    return [WorkflowDefinition.model_validate(data) for data in DEFAULT_WORKFLOWS]


def register_default_workflows(registry: WorkflowDefinitionRegistry) -> List[str]:
    """Register the bundled workflows; returns their ids."""
    registered = []
    for definition in default_workflow_definitions():
        registry.register(definition)
        registered.append(definition.id)
    logger.info(f"Registered default workflows: {registered}")
    return registered
