"""Chat session and quota orchestration."""
