"""Expression evaluation and linearizing factors."""
