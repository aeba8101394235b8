"""slimforge command-line interface."""
