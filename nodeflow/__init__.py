"""nodeflow: a workflow execution engine for graphs of typed nodes."""

__version__ = "1.0.0"
