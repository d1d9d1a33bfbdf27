"""Pure domain layer: DTOs, clock, policies and dependency hooks."""
