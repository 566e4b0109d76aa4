"""Oura metrics proxy for the health check-in journal."""
