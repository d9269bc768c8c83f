"""
Metric node service

This package implements a single process that:
- Polls configured HTTP sources for numeric readings on per-source intervals
- Stores readings as time-series samples and prunes them by retention policy
- Serves the dashboard datasource contract (search/query/annotations/tag-keys/tag-values)

See DESIGN.md for architecture overview.
"""

__version__ = "0.1.0"
