"""Feature encoding, metadata aggregation and batch writes."""
