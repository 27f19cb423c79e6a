"""Integration tests for mysqllock."""
