"""Database drivers — seed schemas."""
