"""
entstore test suite.

This package contains:
- unit/: Unit tests per component (records, log, apply engine, queries,
  schema, config, bound models, property laws)
- integration/: Full dispatch cycles through Schema and Session
"""
