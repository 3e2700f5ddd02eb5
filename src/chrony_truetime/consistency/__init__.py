"""Consistency primitives - commit-wait and two-phase consistent operations."""

from .primitives import CommitFunc, PrepareFunc, consistent_operation, wait_until_after

__all__ = ['CommitFunc', 'PrepareFunc', 'consistent_operation', 'wait_until_after']
