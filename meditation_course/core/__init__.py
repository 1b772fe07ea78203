"""Progression and assessment engines."""
