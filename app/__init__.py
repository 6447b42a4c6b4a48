"""AquaMeter backend application."""
