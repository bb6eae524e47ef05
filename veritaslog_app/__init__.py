"""VeritasLog HTTP service."""
