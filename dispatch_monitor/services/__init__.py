"""Domain services for the dispatch monitor."""
