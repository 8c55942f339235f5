"""Configuration for the venue gateway."""
