"""JSON-ready output schemas."""
