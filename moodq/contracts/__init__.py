"""
Type Contracts for moodq

Protocol-based interfaces between the insights orchestrator and its
collaborators (records source, cache backend, inference provider).
"""

from moodq.contracts.insights import CacheBackend, InsightsProvider, RecordsSource

__all__ = ["CacheBackend", "InsightsProvider", "RecordsSource"]
