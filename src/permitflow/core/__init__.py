"""Shared configuration, enums and error types."""
