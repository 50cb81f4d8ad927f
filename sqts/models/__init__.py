"""
SQTS Schedule Engine
SQLAlchemy extension instance shared by every model module.

Usage:
    from sqts.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
