"""Core building blocks shared across pulsebridge: config, events, errors, logging."""
