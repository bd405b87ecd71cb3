"""Face-embedding photo matching for event photo galleries."""
