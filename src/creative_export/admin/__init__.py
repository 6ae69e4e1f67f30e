"""Admin HTTP surface for the creative export pipeline."""
