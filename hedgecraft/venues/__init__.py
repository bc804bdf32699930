"""External venue interfaces and in-memory paper implementations."""
