"""Taskboard: task and user records with bidirectional assignment sync."""

__version__ = "0.1.0"
