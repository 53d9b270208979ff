"""Repository layer for permitflow.

``protocols`` describes the storage surface shared by the in-memory
``PermitStore`` and the async ``PostgresPermitRepository``. The workflow
service runs on the in-memory store; the Postgres repository is a
standalone async persistence layer with its own atomic numbering and
version-checked status changes.
"""
