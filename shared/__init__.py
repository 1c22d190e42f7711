"""Shared utilities used across components."""
