"""Tests for the AquaMeter backend."""
