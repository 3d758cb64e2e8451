"""Read-only query selectors returning DTOs."""
