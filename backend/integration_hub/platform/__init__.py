"""Platform-wide primitives shared by all modules."""
