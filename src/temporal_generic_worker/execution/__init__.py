"""Temporal engine access, bundle loading and the worker pool."""
