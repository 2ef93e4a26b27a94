"""Workflow runtime: executor, run context, registry and message router."""
