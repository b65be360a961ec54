"""
Integration Tests for Chainly

Integration tests cover end-to-end scenarios:
- Full runs through the engine against a real (SQLite) database
- Pause, approval and resume
- API endpoints
"""
