"""Medical rehabilitation clinic API."""
