"""Document upload and analysis server."""
