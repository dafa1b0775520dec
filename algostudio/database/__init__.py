"""Database layer (SQLAlchemy 2.0 async)"""
