"""
Unit Tests

Run in isolation: the database session, the LLM provider and the catalog
refiller are all replaced with fakes or mocks.
"""
