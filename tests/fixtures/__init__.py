"""
Test fixtures for the creative export pipeline.

This module provides reusable test data and transport doubles.
"""

from .factories import AdFactory, IntegrationFactory, JobFactory, ReviewFactory
from .mocks import PartnerTransport, RecordingSleep

__all__ = [
    # Factories
    "AdFactory",
    "IntegrationFactory",
    "JobFactory",
    "ReviewFactory",
    # Mocks
    "PartnerTransport",
    "RecordingSleep",
]
