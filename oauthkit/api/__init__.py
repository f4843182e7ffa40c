"""HTTP dependencies shared by protected routes."""
