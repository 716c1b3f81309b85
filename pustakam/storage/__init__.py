"""Local persistence: key/value backends, books, bookmarks and backups."""
