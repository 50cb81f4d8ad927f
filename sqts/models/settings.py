"""
Setting Model: key/value application settings.

Holds the propagation policy switches (``propagation_skip_complete``,
``propagation_skip_locked``, ``propagation_skip_overridden``,
``use_business_days``). A key missing from the table falls back to the
app config default (see ``settings_service``).
"""

from datetime import datetime, timezone

from sqts.models import db


class Setting(db.Model):
    """Single key/value setting; values are stored as text."""
    __tablename__ = "settings"

    key = db.Column(db.String(100), primary_key=True)  # e.g. "use_business_days"
    value = db.Column(db.Text, nullable=False, default="")
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "key": self.key,
            "value": self.value,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
