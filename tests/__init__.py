"""
couchbind test suite.

This package contains:
- unit/: Unit tests against the in-memory CouchDB server
- integration/: Client scenarios across services
- e2e/: End-to-end tests against a real CouchDB (COUCHBIND_E2E_TESTS=1)
"""
