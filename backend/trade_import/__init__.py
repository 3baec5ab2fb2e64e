"""Options trade CSV import service."""
