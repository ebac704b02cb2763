"""Local configuration and the task-block format."""
