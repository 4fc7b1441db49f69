from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Text

from storefront.models.base import Base, IdType, JSONType, utcnow

USER_ROLES = ("customer", "admin")
AUTH_PROVIDERS = ("local", "google", "facebook")


class User(Base):
    """
    A registered customer or administrator.

    hashed_password is nullable so accounts created through a social provider
    (provider != 'local') can exist without a local password.

    addresses is a JSON list of {street, city, state, postal_code, country,
    is_default} objects; it is only ever read and written as a whole.

    wishlist is a JSON list of product ids in the order they were added.
    Ids of deleted products are left in place and skipped when read.
    """

    __tablename__ = "users"

    id = Column(IdType, primary_key=True, autoincrement=True)
    first_name = Column(Text, nullable=False)
    last_name = Column(Text, nullable=False)
    email = Column(Text, nullable=False, unique=True, index=True)
    hashed_password = Column(Text, nullable=True)
    phone_number = Column(Text, nullable=True)
    addresses = Column(JSONType, nullable=False, default=list)
    wishlist = Column(JSONType, nullable=False, default=list)
    role = Column(Text, nullable=False, default="customer")
    is_admin = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    provider = Column(Text, nullable=False, default="local")
    provider_id = Column(Text, nullable=True)
    profile_picture = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("role IN ('customer','admin')", name="ck_user_role"),
        CheckConstraint("provider IN ('local','google','facebook')", name="ck_user_provider"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone_number": self.phone_number,
            "addresses": self.addresses or [],
            "wishlist": list(self.wishlist or []),
            "role": self.role,
            "is_admin": self.is_admin,
            "is_active": self.is_active,
            "provider": self.provider,
            "profile_picture": self.profile_picture,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r}>"
