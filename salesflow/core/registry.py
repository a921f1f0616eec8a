"""Registry of workflow definitions."""

import threading
from typing import Dict, List, Optional

from ..models.core import ValidationResult, WorkflowDefinition, WorkflowSummary
from .capabilities import CapabilityRegistry
from .conditions import validate_predicate
from .exceptions import NotFoundError, WorkflowValidationError
from .logging import get_logger
from .scheduler import build_batches

logger = get_logger(__name__)


class WorkflowDefinitionRegistry:
    """Validates and stores workflow definitions by id."""

    def __init__(self, capabilities: Optional[CapabilityRegistry] = None):
        """
        Args:
            capabilities: When given, every step's (agent, action) pair must be registered
        """
        self._capabilities = capabilities
        self._definitions: Dict[str, WorkflowDefinition] = {}
        self._lock = threading.RLock()

    def validate_definition(self, definition: WorkflowDefinition) -> ValidationResult:
        """
        Validate a workflow definition for structural correctness.

        Args:
            definition: The definition to validate

        Returns:
            ValidationResult: Validation results with errors and warnings
        """
        errors: List[str] = []
        warnings: List[str] = []

        self._validate_references(definition, errors)
        if not errors:
            self._validate_cycles(definition, errors)
        self._validate_predicates(definition, errors)
        self._validate_capabilities(definition, errors)

        if not definition.triggers:
            warnings.append(f"Workflow '{definition.id}' has no triggers and can only be started manually")

        result = ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)
        logger.debug(
            f"Workflow validation completed for {definition.id}. Valid: {result.is_valid}, "
            f"Errors: {len(errors)}, Warnings: {len(warnings)}"
        )
        return result

    def _validate_references(self, definition: WorkflowDefinition, errors: List[str]) -> None:
        step_ids = set(definition.step_ids)
        for step in definition.steps:
            for dep in step.depends_on:
                if dep == step.id:
                    errors.append(f"Step '{step.id}' depends on itself")
                elif dep not in step_ids:
                    errors.append(f"Step '{step.id}' depends on unknown step '{dep}'")

    def _validate_cycles(self, definition: WorkflowDefinition, errors: List[str]) -> None:
        try:
            build_batches(definition)
        except WorkflowValidationError as e:
            errors.append(e.message)

    def _validate_predicates(self, definition: WorkflowDefinition, errors: List[str]) -> None:
        for index, trigger in enumerate(definition.triggers):
            errors.extend(validate_predicate(trigger.conditions, f"triggers[{index}].conditions"))
        for step in definition.steps:
            errors.extend(validate_predicate(step.conditions, f"steps.{step.id}.conditions"))

    def _validate_capabilities(self, definition: WorkflowDefinition, errors: List[str]) -> None:
        if self._capabilities is None:
            return
        for step in definition.steps:
            if not self._capabilities.has_capability(step.agent, step.action):
                errors.append(
                    f"Step '{step.id}' references unknown capability '{step.action}' on agent '{step.agent}'"
                )

    def register(self, definition: WorkflowDefinition) -> None:
        """
        Validate and store a definition, replacing any definition with the same id.

        Raises:
            WorkflowValidationError: If validation fails
        """
        result = self.validate_definition(definition)
        if not result.is_valid:
            error_msg = f"Workflow '{definition.id}' validation failed: {'; '.join(result.errors)}"
            logger.error(error_msg)
            raise WorkflowValidationError(error_msg, validation_errors=result.errors, workflow_id=definition.id)

        if result.warnings:
            logger.warning(f"Workflow validation warnings: {'; '.join(result.warnings)}")

        stored = definition.model_copy(deep=True)
        with self._lock:
            replaced = definition.id in self._definitions
            self._definitions[definition.id] = stored

        action = "Replaced" if replaced else "Registered"
        logger.info(f"{action} workflow '{definition.id}' ({definition.name}) version {definition.version}")

    def unregister(self, workflow_id: str) -> None:
        """
        Remove a definition. Running executions keep the definition they started with.

        Raises:
            NotFoundError: If no definition has this id
        """
        with self._lock:
            if workflow_id not in self._definitions:
                raise NotFoundError(
                    f"Workflow '{workflow_id}' not found",
                    resource_type="workflow", resource_id=workflow_id
                )
            del self._definitions[workflow_id]
        logger.info(f"Unregistered workflow '{workflow_id}'")

    def get(self, workflow_id: str) -> WorkflowDefinition:
        """
        Raises:
            NotFoundError: If no definition has this id
        """
        with self._lock:
            definition = self._definitions.get(workflow_id)
        if definition is None:
            raise NotFoundError(
                f"Workflow '{workflow_id}' not found",
                resource_type="workflow", resource_id=workflow_id
            )
        return definition

    def list_definitions(self) -> List[WorkflowDefinition]:
        with self._lock:
            return list(self._definitions.values())

    def list_summaries(self) -> List[WorkflowSummary]:
        return [
            WorkflowSummary(
                id=definition.id,
                name=definition.name,
                description=definition.description,
                version=definition.version,
                step_count=len(definition.steps),
                trigger_events=[trigger.event for trigger in definition.triggers],
            )
            for definition in self.list_definitions()
        ]

    def find_by_event(self, event_type: str) -> List[WorkflowDefinition]:
        """Definitions with at least one trigger on the given event type."""
        return [
            definition for definition in self.list_definitions()
            if any(trigger.event == event_type for trigger in definition.triggers)
        ]

    def __contains__(self, workflow_id: str) -> bool:
        with self._lock:
            return workflow_id in self._definitions

    def __len__(self) -> int:
        with self._lock:
            return len(self._definitions)
