"""Flask surface for the billing engine."""
