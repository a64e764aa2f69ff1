"""Filesystem-backed persistence."""
