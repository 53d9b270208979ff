"""PostgreSQL implementations of the repository protocols."""
