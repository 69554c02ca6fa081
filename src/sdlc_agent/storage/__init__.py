"""SQLite storage for development records."""
