"""End-to-end tests for the clinic web application."""
