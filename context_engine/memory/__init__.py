"""Behavior memory: learned style, architecture patterns and usage."""
