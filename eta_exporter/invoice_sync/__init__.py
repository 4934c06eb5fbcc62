"""Documents-list scanning, multi-page traversal and detail enrichment."""
