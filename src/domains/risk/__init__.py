"""Transaction risk scoring: deterministic rules and the advisory fraud oracle."""
