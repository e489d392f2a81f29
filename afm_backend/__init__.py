"""Asset search backend: SQLite store adapter, filter compiler and search route."""
