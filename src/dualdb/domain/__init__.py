"""Domain layer - value model, records, indexes and query evaluation."""
