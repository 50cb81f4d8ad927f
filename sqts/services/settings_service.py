"""
Settings Service: propagation policy read/write.

Settings live in the ``settings`` key/value table. A key that has never been
written falls back to the app config default:

    propagation_skip_complete    → PROPAGATION_SKIP_COMPLETE
    propagation_skip_locked      → PROPAGATION_SKIP_LOCKED
    propagation_skip_overridden  → PROPAGATION_SKIP_OVERRIDDEN
    use_business_days            → USE_BUSINESS_DAYS
"""

import logging
from dataclasses import asdict, dataclass

from flask import current_app

from sqts.core.exceptions import NotFoundError, ValidationError
from sqts.models import db
from sqts.models.audit import write_audit
from sqts.models.settings import Setting

logger = logging.getLogger(__name__)

# setting key -> app config key
POLICY_SETTINGS = {
    "propagation_skip_complete": "PROPAGATION_SKIP_COMPLETE",
    "propagation_skip_locked": "PROPAGATION_SKIP_LOCKED",
    "propagation_skip_overridden": "PROPAGATION_SKIP_OVERRIDDEN",
    "use_business_days": "USE_BUSINESS_DAYS",
}

_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off"}


@dataclass(frozen=True)
class PropagationPolicy:
    skip_complete: bool = True
    skip_locked: bool = True
    skip_overridden: bool = True
    use_business_days: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


def _parse_bool(key, value) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValidationError(f"{key} must be true or false", details={key: str(value)})


def _default(key):
    return bool(current_app.config.get(POLICY_SETTINGS[key], False))


def get_bool(key: str) -> bool:
    row = db.session.get(Setting, key)
    if row is None:
        return _default(key)
    try:
        return _parse_bool(key, row.value)
    except ValidationError:
        logger.warning("Setting %s has unreadable value %r, using default", key, row.value)
        return _default(key)


def get_propagation_policy() -> PropagationPolicy:
    return PropagationPolicy(
        skip_complete=get_bool("propagation_skip_complete"),
        skip_locked=get_bool("propagation_skip_locked"),
        skip_overridden=get_bool("propagation_skip_overridden"),
        use_business_days=get_bool("use_business_days"),
    )


def list_settings() -> list[dict]:
    """Every stored setting plus the policy keys at their effective value."""
    stored = {s.key: s for s in Setting.query.order_by(Setting.key).all()}
    result = []
    for key in sorted(set(stored) | set(POLICY_SETTINGS)):
        row = stored.get(key)
        if key in POLICY_SETTINGS:
            value = "true" if get_bool(key) else "false"
        else:
            value = row.value
        result.append({
            "key": key,
            "value": value,
            "is_default": row is None,
            "updated_at": row.updated_at.isoformat() if row and row.updated_at else None,
        })
    return result


def update_setting(key: str, value) -> Setting:
    """Upsert one setting. Policy keys only accept boolean values."""
    if not key or len(key) > 100:
        raise ValidationError("Setting key must be 1-100 characters", details={"key": key})
    if value is None:
        raise ValidationError("value is required", details={"value": "required"})

    if key in POLICY_SETTINGS:
        value = "true" if _parse_bool(key, value) else "false"
    else:
        value = str(value)

    row = db.session.get(Setting, key)
    old = row.value if row else None
    if row is None:
        row = Setting(key=key, value=value)
        db.session.add(row)
    else:
        row.value = value
    write_audit(
        entity_type="setting", entity_id=key, action="setting.update",
        diff={"value": {"old": old, "new": value}},
    )
    db.session.commit()
    logger.info("Setting %s updated: %r → %r", key, old, value)
    return row


def delete_setting(key: str) -> None:
    """Remove a stored value; policy keys fall back to their config default."""
    row = db.session.get(Setting, key)
    if row is None:
        raise NotFoundError("Setting", key)
    db.session.delete(row)
    write_audit(entity_type="setting", entity_id=key, action="delete",
                diff={"value": {"old": row.value, "new": None}})
    db.session.commit()
    logger.info("Setting %s reset to default", key)
