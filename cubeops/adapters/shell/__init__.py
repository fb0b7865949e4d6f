"""Host-level helpers — TCP ports and processes."""
