"""Markdown task list model, parser and store."""
