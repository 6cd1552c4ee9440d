"""Built-in node handlers."""
