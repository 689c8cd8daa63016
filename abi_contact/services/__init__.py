"""Contact form processing services."""
