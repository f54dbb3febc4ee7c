"""Temporal workflows, worker and client of the sync service.

Workflow modules are loaded inside the workflow sandbox, so this package
imports nothing eagerly.
"""
