"""Session and synchronization core."""
