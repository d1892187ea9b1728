"""HTTP API for role administration and permission checks."""
