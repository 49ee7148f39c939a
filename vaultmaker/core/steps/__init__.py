"""Generation steps, one module per task kind."""
