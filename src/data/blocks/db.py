"""Database models for blocks."""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, DateTime, Index, Numeric, SmallInteger, func
from sqlalchemy.orm import Mapped, mapped_column

from src.helpers.db import Base

# uint256 fits in 78 decimal digits
WEI_NUMERIC = Numeric(78, 0)


class BlockDB(Base):
    """Ethereum block gas and blob fee record."""

    __tablename__ = "blocks"

    block_number: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    gas_limit: Mapped[int] = mapped_column(BigInteger, nullable=False)
    gas_used: Mapped[int] = mapped_column(BigInteger, nullable=False)
    base_fee: Mapped[Decimal] = mapped_column(
        WEI_NUMERIC, nullable=False, doc="Base fee per gas in wei"
    )
    blob_count: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, server_default="0"
    )
    blob_base_fee: Mapped[Decimal] = mapped_column(
        WEI_NUMERIC, nullable=False, server_default="0", doc="Blob base fee in wei"
    )
    excess_blob_gas: Mapped[int] = mapped_column(
        BigInteger, nullable=False, server_default="0"
    )
    block_timestamp: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


# Retention scans and recency queries
Index("idx_blocks_created_at", BlockDB.created_at.desc())
Index("idx_blocks_block_timestamp", BlockDB.block_timestamp.desc())
Index("idx_blocks_block_number_desc", BlockDB.block_number.desc())
