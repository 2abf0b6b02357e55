"""Baseline Alembic revision for the ChallengeGov schema.

Creates every table declared on challengegov.db.Base. Databases that were
bootstrapped by the startup hook should be stamped instead:
    alembic stamp 0001_challengegov_baseline
"""

from __future__ import annotations

from alembic import op

from challengegov import models  # noqa: F401
from challengegov.db import Base

revision: str = "0001_challengegov_baseline"
down_revision: str | None = None
branch_labels: tuple[str, ...] | None = None
depends_on: tuple[str, ...] | None = None


def upgrade() -> None:
    Base.metadata.create_all(bind=op.get_bind())


def downgrade() -> None:
    Base.metadata.drop_all(bind=op.get_bind())
