"""Quota limiters.

Two interchangeable implementations per window strategy: one keeping its
counters in the shared store (authoritative across workers) and one keeping
them in process memory (used while the store is unreachable).
"""
