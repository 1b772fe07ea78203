"""Configuration, logging and error utilities."""
