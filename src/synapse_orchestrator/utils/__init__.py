"""Filesystem and threading helpers shared across layers."""
