"""Creative export pipeline: delivers approved ad creatives to partner integrations."""

__version__ = "0.4.0"
