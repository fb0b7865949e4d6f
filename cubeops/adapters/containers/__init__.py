"""Container drivers — docker compose services and image tags."""
