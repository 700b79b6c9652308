"""Read-only ORM mappings of the product tables used by the dashboard.

The tables are created and written by the backend-as-a-service (signup flow,
transformation workers, payment webhooks). Only the columns the aggregation
pipeline reads are mapped here; nothing in this application writes to them.

Tables:
- auth.users: accounts (the authoritative e-mail store)
- photo_transformations: one row per transformation job
- payments: checkout charges from the payment gateway
- user_styles: the style each account picked (one row per account)
- credit_usage_history: credits debited per transformation
"""

import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import DateTime, Integer, Numeric, String, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class AuthUser(Base):
    """Account row from the auth schema.

    Attributes:
        id: Account id (UUID, referenced as user_id elsewhere).
        email: Login e-mail.
        created_at: Signup timestamp.
        email_confirmed_at: When the e-mail was confirmed; null if never.
    """

    __tablename__ = "users"
    __table_args__ = {"schema": "auth"}

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True))
    email_confirmed_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class PhotoTransformation(Base):
    """Transformation job.

    Attributes:
        id: Job id.
        user_id: Owner account id.
        original_image_name: Uploaded file name.
        original_image_url: Storage URL of the upload.
        transformed_images: JSON array of result URLs, oldest first.
        reprocessing_count: Number of times the job was re-run.
        status: processing, completed or failed.
        created_at: Job creation time.
    """

    __tablename__ = "photo_transformations"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True)
    user_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), index=True)
    original_image_name: Mapped[str] = mapped_column(String)
    original_image_url: Mapped[str] = mapped_column(String)
    transformed_images: Mapped[Any] = mapped_column(JSONB)
    reprocessing_count: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True))


class Payment(Base):
    """Checkout charge.

    Attributes:
        id: Row id.
        user_id: Paying account id.
        value: Charged amount in currency units.
        status: Gateway status (PENDING, CONFIRMED, ...).
        plan_name: Credit plan bought.
        billing_type: Payment method (CREDIT_CARD, PIX, ...).
        created_at: Charge creation time.
    """

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True)
    user_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), index=True)
    value: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    status: Mapped[str] = mapped_column(String)
    plan_name: Mapped[str] = mapped_column(String)
    billing_type: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class UserStyle(Base):
    """Style chosen by an account during onboarding."""

    __tablename__ = "user_styles"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True)
    user_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), index=True)
    selected_style: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True))


class CreditUsage(Base):
    """Credits debited from an account."""

    __tablename__ = "credit_usage_history"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True)
    user_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), index=True)
    amount_used: Mapped[int] = mapped_column(Integer)
    used_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True))
