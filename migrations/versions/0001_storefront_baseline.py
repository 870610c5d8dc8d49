"""storefront baseline

Checkout, order, invoice and wallet tables as declared in app.models.
Fresh databases get them from SQLModel.metadata.create_all at startup; this revision
only marks that schema as the starting point for later migrations.

"""
from typing import Sequence, Union

from alembic import op  # noqa: F401
import sqlmodel  # noqa: F401


revision: str = "0001_storefront_baseline"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    pass


def downgrade() -> None:
    # No-op: ledger and invoice history is never dropped by a downgrade
    pass
