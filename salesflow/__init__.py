"""Workflow orchestration engine for AI-assisted sales agents."""

__version__ = "1.0.0"
