"""Storage, identity, and record services used by the web application."""
