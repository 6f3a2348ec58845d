import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from storefront.core.exceptions import ValidationError, fields_from_errors
from storefront.models.system import StoreSetting
from storefront.schemas.settings import StoreSettings
from storefront.services.audit import record_audit

logger = logging.getLogger(__name__)


def deep_merge(base: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class SettingsService:
    def __init__(self, db: Session):
        self.db = db

    def _row(self) -> Optional[StoreSetting]:
        return self.db.query(StoreSetting).order_by(StoreSetting.id).first()

    def get_settings(self) -> StoreSettings:
        """Stored settings layered over the defaults."""
        row = self._row()
        defaults = StoreSettings().model_dump(mode="json")
        if row is None or not row.data:
            return StoreSettings.model_validate(defaults)
        return StoreSettings.model_validate(deep_merge(defaults, row.data))

    def update_settings(self, updates: Dict[str, Any], actor_id: Optional[int] = None) -> StoreSettings:
        merged = deep_merge(self.get_settings().model_dump(mode="json"), updates)
        try:
            settings = StoreSettings.model_validate(merged)
        except PydanticValidationError as e:
            raise ValidationError("Validation failed", fields_from_errors(e.errors()))

        data = settings.model_dump(mode="json")
        row = self._row()
        if row is None:
            row = StoreSetting(data=data)
            self.db.add(row)
            self.db.flush()
        else:
            row.data = data
        record_audit(self.db, actor_id, "update", "settings", row.id, {"sections": sorted(updates)})
        self.db.commit()
        logger.info(f"Store settings updated: {sorted(updates)}")
        return settings
