"""
Declarative base shared by all ORM models.

Kept in its own module so models and tests can import it without pulling in
the model registry.
"""

from sqlalchemy.orm import declarative_base

Base = declarative_base()
