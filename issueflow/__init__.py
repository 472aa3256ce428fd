"""issueflow: phase orchestration for tracked issues."""

__version__ = "0.1.0"
