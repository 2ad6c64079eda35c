# StampWallet test suite
#
# In-process tests against an in-memory SQLite database:
# - services: ledger managers, accessors, store
# - routes: Flask test client over the JSON API
# - cli: flask command groups
#
# Run with: pytest
