"""Git drivers."""
