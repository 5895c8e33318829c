"""Platform-specific devices and discovery sources."""
