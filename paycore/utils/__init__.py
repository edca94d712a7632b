"""PayCore - Utilities."""
