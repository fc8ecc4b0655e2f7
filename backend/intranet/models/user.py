from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.sql import func
from intranet.database.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)

    email = Column(String, unique=True, index=True, nullable=False)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)

    password_hash = Column(String, nullable=False)

    role = Column(String, nullable=False, default="employee")  # admin | manager | employee
    position = Column(String, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)
    last_login = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
