"""Import ingestion pipeline.

This module sniffs raw sources, decodes them into records, and drives
batches through the store layer with progress and cancellation.
"""
