"""Per-ecosystem detection of typecheck, lint and test commands."""
