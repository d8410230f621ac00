"""
Loan Query Workflow
Model package: the shared Flask-SQLAlchemy handle plus model modules.

    from query_workflow.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
