"""Utility helpers for ffmerge."""
