"""Change detection and the indexing coordinator."""
