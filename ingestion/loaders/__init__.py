"""
Storage implementations backed by SQLAlchemy
"""
