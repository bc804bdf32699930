"""Core engine: allocation math, hedge lifecycle and the position orchestrator."""
