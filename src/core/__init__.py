"""Core containers: keys, values, noise models and linear factors."""
