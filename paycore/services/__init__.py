"""PayCore - Services."""
