"""pollsource test suite.

Organization:
- unit/: one module per library module, using an in-memory ``fakedb``
  DB-API driver (see conftest.py) or a throwaway SQLite file
- integration/: end-to-end runs against real SQLite databases, including
  YAML configs, incremental polling and runner restarts
"""
