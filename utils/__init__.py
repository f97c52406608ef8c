"""Small shared utilities (HTTP session)."""
