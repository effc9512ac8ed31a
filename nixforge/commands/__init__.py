"""Command execution engine: process runner, output filtering and status messages."""
