"""Domain records and events."""
