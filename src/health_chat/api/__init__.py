"""HTTP relay."""
