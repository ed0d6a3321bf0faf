"""Live terminal dashboard."""
