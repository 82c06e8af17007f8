"""Chat feature package: one endpoint per turn, backed by the turn pipeline."""
