"""Settings, errors, clock, logging, and application wiring."""
