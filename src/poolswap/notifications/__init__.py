"""Swap status sinks."""
