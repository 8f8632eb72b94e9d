"""On-disk index storage."""
