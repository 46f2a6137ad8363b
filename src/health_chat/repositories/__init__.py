"""Key-value persistence and the conversation store."""
