"""
AgroBridge marketplace backend.

A FastAPI service over two document collections, crops (each embedding the
interests buyers have sent on it) and users, with swappable in-memory,
SQLAlchemy and MongoDB stores.
"""
