"""Cross-cutting infrastructure: errors and logging."""
