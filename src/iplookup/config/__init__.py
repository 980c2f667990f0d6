"""Configuration loading and logging setup for the iplookup CLI."""
