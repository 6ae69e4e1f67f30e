"""
Service modules for the creative export pipeline.

This package contains the orchestration layer: integration lookup, export job
processing, review-level integration runs and mapping previews.
"""
