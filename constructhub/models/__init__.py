"""
ConstructHub domain models.

The shared ``db`` instance is bound to the app in ``create_app``; model
modules import it from here.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
