"""EventBridge consumers for recurring pattern detection."""
