"""Adapters for the external coding agents the loop drives."""
