"""Agent adapters for structured extraction and intent classification."""
