from __future__ import annotations

from sqlalchemy import Text
from sqlalchemy.orm import Mapped, mapped_column

from log_indexer.app.infrastructure.db.db_base import BaseDB


class MetaDB(BaseDB):
    """
    Key-value settings persisted next to the logs.

    Holds the sync checkpoint under the "last_block" key: every block strictly
    below that value has been fully scanned and stored.
    """

    __tablename__ = "meta"

    key: Mapped[str] = mapped_column(Text, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
