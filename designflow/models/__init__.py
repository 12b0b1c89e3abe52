"""
DesignFlow
Model package — shared SQLAlchemy handle.

Usage:
    from designflow.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
