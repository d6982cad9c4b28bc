"""Authentication for the operator console."""
