"""API routes and schemas."""
