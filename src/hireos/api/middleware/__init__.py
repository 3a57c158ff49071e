"""HTTP middleware for the HireOS API."""
