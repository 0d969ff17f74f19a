"""SQLite persistence for cache entries, quota windows and the usage log."""
