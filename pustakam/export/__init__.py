"""PDF and Markdown export of finished books."""
