"""
SLA Engine
Database models package.

The shared ``db`` instance lives here so that models, services and the
application factory all bind to the same Flask-SQLAlchemy extension.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
