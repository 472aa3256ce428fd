"""Workflow state: the persistent store and the jobs that maintain it."""
