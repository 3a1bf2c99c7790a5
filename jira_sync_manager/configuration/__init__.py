"""Configuration providers, settings models and the command line interface."""
