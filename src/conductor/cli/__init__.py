"""conductor command line."""
