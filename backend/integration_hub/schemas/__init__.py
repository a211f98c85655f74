"""Value objects exchanged with the API layer."""
