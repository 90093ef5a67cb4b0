from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.db.base import Base


class User(Base):
    """A marketplace company account, either a publisher or a buyer."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    company_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default="active", server_default="active"
    )
    # Buyers only: the demand-side platform their settled deals are bid through
    dsp_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def is_publisher(self) -> bool:
        return self.user_type == "publisher"

    @property
    def is_buyer(self) -> bool:
        return self.user_type == "buyer"
