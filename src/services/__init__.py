"""Services layer - Queueing, scheduling and workflow storage."""
