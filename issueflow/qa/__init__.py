"""QA result caching."""
