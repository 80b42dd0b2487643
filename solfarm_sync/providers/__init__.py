"""Remote catalog adapters."""
