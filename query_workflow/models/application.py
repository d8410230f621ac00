"""
Application Registry — read-only view of loan applications.

Rows are created by the bulk-ingestion subsystem (outside this service).
The workflow engine only looks an application up to validate an App.No
before a query is raised against it, and to copy customer / branch details
onto the new QueryGroup.  It never mutates an Application.
"""

from datetime import datetime, timezone

from sqlalchemy import func

from query_workflow.models import db


def normalise_app_number(value: str | None) -> str:
    """Trim and collapse internal whitespace ("APP  123 " -> "APP 123")."""
    return " ".join((value or "").split())


class Application(db.Model):
    """A loan application as known to the registry."""

    __tablename__ = "applications"

    id = db.Column(db.Integer, primary_key=True)
    app_number = db.Column(
        db.String(64),
        nullable=False,
        unique=True,
        index=True,
        comment="Unique App.No, looked up case-insensitively",
    )
    customer_name = db.Column(db.String(255), nullable=False)
    branch = db.Column(db.String(120), nullable=True)
    status = db.Column(
        db.String(30),
        nullable=False,
        default="pending",
        comment="pending | approved | rejected | under_review | sanctioned",
    )
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def branch_code(self) -> str:
        return (self.branch or "")[:3].upper() or "DEF"

    def to_dict(self) -> dict:
        return {
            "appNo": self.app_number,
            "customerName": self.customer_name,
            "branch": self.branch,
            "branchCode": self.branch_code,
            "status": self.status,
        }

    def __repr__(self) -> str:
        return f"<Application {self.app_number}>"


def find_application(app_number: str) -> Application | None:
    """Resolve an App.No: exact match first, then case/whitespace-insensitive."""
    wanted = normalise_app_number(app_number)
    if not wanted:
        return None
    app_row = Application.query.filter_by(app_number=wanted).first()
    if app_row:
        return app_row
    return Application.query.filter(
        func.lower(Application.app_number) == wanted.lower()
    ).first()
