"""Portal API: role-based access control backend."""
