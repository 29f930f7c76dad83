"""Membership sink adapters, loaded by module name from the configuration."""
