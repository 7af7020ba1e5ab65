"""Framework adapters emitting execution lifecycle notifications."""
