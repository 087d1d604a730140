"""In-memory aggregation cache and the retrieval scheduler that reads from it."""
