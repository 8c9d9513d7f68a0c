"""Feature store package for GeoJSON datasets on DynamoDB and S3.

This package keeps GeoJSON features in a shared key-value table, one record
per feature, and maintains a per-dataset metadata record summarizing them.

- Feature payloads are stored inline, or spilled to S3 when they are large
- Metadata (count, size, bounds) is updated by commutative conditional writes,
  so any number of writers can update it concurrently without locks
- Metadata reads derive a recommended tile zoom range from size and extent
- Batch writes report the exact subset the store did not apply, for retry

See module sub-docstrings for details on architecture and usage.
"""
