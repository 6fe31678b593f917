"""
Repositories over the single sender table.

Key formats and conditional-write details stay in this layer; the lifecycle
manager works with domain models only.
"""

from .domain_repository import DomainRepository
from .sender_repository import SenderRepository

__all__ = ['DomainRepository', 'SenderRepository']
