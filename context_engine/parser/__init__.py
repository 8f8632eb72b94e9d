"""Chunking, symbol extraction, doc records and import graphs."""
