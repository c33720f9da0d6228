"""Infrastructure layer - configuration, persistence and the payment gateway."""
