"""perceive command-line interface."""
