"""API route modules."""

__all__ = [
    "health",
    "capabilities",
    "upload",
    "test_runs",
    "metrics",
]
