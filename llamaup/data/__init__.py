"""Bundled data files (the default GPU pattern table)."""
