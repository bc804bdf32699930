"""Configuration: process settings and validated engine parameters."""
