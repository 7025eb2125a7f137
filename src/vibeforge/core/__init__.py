"""Core domain logic for vibeforge."""
