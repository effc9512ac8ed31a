"""Shared utilities for nixforge."""
