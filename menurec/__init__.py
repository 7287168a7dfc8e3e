"""Menu recommendation and experimentation service."""
