"""Target write layer.

This module writes record batches to document collections with
conflict-aware duplicate handling, or previews them without writing.
"""
