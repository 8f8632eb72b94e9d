"""Shared data models, language tables and the workspace registry."""
