"""Textual user interface for nixforge."""
