"""Detour command-line interface."""
