"""Bundled sales workflows and demo worker agents."""

from .default_workflows import DEFAULT_WORKFLOWS, default_workflow_definitions, register_default_workflows
from .demo_agents import DEMO_AGENTS, register_demo_agents

__all__ = [
    "DEFAULT_WORKFLOWS",
    "DEMO_AGENTS",
    "default_workflow_definitions",
    "register_default_workflows",
    "register_demo_agents",
]
