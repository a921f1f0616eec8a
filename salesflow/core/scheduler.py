"""Dependency batching for workflow steps."""

from typing import Dict, List

from ..models.core import WorkflowDefinition, WorkflowStep
from .exceptions import WorkflowValidationError
from .logging import get_logger

logger = get_logger(__name__)


def build_batches(definition: WorkflowDefinition) -> List[List[WorkflowStep]]:
    """
    Partition a definition's steps into dependency-ordered batches.

    Each round selects every remaining step whose dependencies were all
    placed in earlier batches. Steps inside a batch keep declaration order.

    Args:
        definition: Workflow definition to plan

    Returns:
        List of batches; their union is exactly the definition's steps

    Raises:
        WorkflowValidationError: If a dependency is unknown or the steps contain a cycle
    """
    known_ids = set(definition.step_ids)
    unknown = [
        f"{step.id} -> {dep}"
        for step in definition.steps
        for dep in step.depends_on
        if dep not in known_ids
    ]
    if unknown:
        raise WorkflowValidationError(
            f"Workflow '{definition.id}' has unknown dependencies: {', '.join(unknown)}",
            validation_errors=[f"Unknown dependency: {item}" for item in unknown],
            workflow_id=definition.id
        )

    batches: List[List[WorkflowStep]] = []
    placed: set = set()
    remaining = list(definition.steps)

    while remaining:
        ready = [step for step in remaining if all(dep in placed for dep in step.depends_on)]
        if not ready:
            unresolved = [step.id for step in remaining]
            raise WorkflowValidationError(
                f"Circular dependency in workflow '{definition.id}': "
                f"unresolved steps {', '.join(unresolved)}",
                validation_errors=[f"Step '{sid}' is part of or depends on a cycle" for sid in unresolved],
                workflow_id=definition.id
            ).add_details(unresolved_steps=unresolved)

        batches.append(ready)
        placed.update(step.id for step in ready)
        ready_ids = {step.id for step in ready}
        remaining = [step for step in remaining if step.id not in ready_ids]

    logger.debug(
        f"Planned workflow {definition.id} into {len(batches)} batches: "
        f"{[[step.id for step in batch] for batch in batches]}"
    )
    return batches


def batch_index(batches: List[List[WorkflowStep]]) -> Dict[str, int]:
    """Map each step id to the index of the batch it runs in."""
    return {step.id: index for index, batch in enumerate(batches) for step in batch}
