"""Organization-defined message templates."""

from typing import Optional

from sqlalchemy import JSON
from sqlalchemy.orm import Mapped, mapped_column

from db.base import BaseModel


class ActionTemplate(BaseModel):
    """Email / SMS template owned by an organization.

    Attributes:
        organization_id: Owning tenant
        name: Display name
        channel: EMAIL or SMS
        is_public: Visible to every organization
        is_locked: Callers may not override the stored content
        content: {"subject", "html_body", "message"}
        required_variables: Placeholders that must be supplied
        optional_variables: Placeholders that may be supplied
    """

    __tablename__ = "action_templates"

    organization_id: Mapped[str] = mapped_column(nullable=False, index=True)
    name: Mapped[str] = mapped_column(nullable=False)
    channel: Mapped[str] = mapped_column(nullable=False, default="EMAIL")
    is_public: Mapped[bool] = mapped_column(default=False)
    is_locked: Mapped[bool] = mapped_column(default=False)
    content: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    required_variables: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    optional_variables: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
