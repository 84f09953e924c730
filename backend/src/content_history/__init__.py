"""Delta-compressed version history for markdown posts and pages."""
