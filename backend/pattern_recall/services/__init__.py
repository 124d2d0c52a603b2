"""Service layer for scheduling, selection, grading and review orchestration."""
