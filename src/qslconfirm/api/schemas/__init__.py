"""Request and response schemas for the QSL Confirm API."""
