"""Business logic services for the submission vault."""
