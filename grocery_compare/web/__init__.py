"""HTTP API for the grocery price comparator."""
