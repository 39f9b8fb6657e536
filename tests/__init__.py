"""
Coordination Server Test Suite

Test organization:
- tests/unit/: Unit tests for individual components
- tests/integration/: Integration tests through the server facade

Run tests:
    pytest                      # All tests
    pytest -m unit              # Unit tests only
    pytest -m integration       # Integration tests only
    pytest tests/unit/          # Specific directory
    pytest -k allocator         # Tests matching 'allocator'
"""
