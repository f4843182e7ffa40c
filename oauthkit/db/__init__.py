"""SQL storage backends."""
