from decimal import Decimal
from typing import Any, Iterable, TypeVar

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session

from rudark.models.shop_setting import ShopSetting
from rudark.schemas.settings import CollectionSettings, PaymentSettings, SenderProfile, ShippingSettings

SettingsModel = TypeVar("SettingsModel", bound=BaseModel)

SETTINGS_DOCUMENTS: dict[str, type[BaseModel]] = {
    "payment": PaymentSettings,
    "shipping": ShippingSettings,
    "collection": CollectionSettings,
    "sender": SenderProfile,
}


def _deep_merge(base: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _load(db: Session, key: str, model: type[SettingsModel]) -> SettingsModel:
    row = db.execute(select(ShopSetting).where(ShopSetting.key == key)).scalar_one_or_none()
    return model.model_validate(row.value_json if row and row.value_json else {})


def get_settings_document(db: Session, key: str) -> BaseModel:
    return _load(db, key, SETTINGS_DOCUMENTS[key])


def update_settings_document(db: Session, key: str, patch: dict[str, Any]) -> BaseModel:
    """Merges the patch into the stored document. Caller commits."""
    model = SETTINGS_DOCUMENTS[key]
    current = _load(db, key, model).model_dump(mode="json")
    updated = model.model_validate(_deep_merge(current, patch))
    row = db.execute(select(ShopSetting).where(ShopSetting.key == key)).scalar_one_or_none()
    if row is None:
        row = ShopSetting(key=key, value_json={})
        db.add(row)
    row.value_json = updated.model_dump(mode="json")
    return updated


def get_payment_settings(db: Session) -> PaymentSettings:
    return _load(db, "payment", PaymentSettings)


def get_shipping_settings(db: Session) -> ShippingSettings:
    return _load(db, "shipping", ShippingSettings)


def get_collection_settings(db: Session) -> CollectionSettings:
    return _load(db, "collection", CollectionSettings)


def get_sender_profile(db: Session) -> SenderProfile:
    return _load(db, "sender", SenderProfile)


def qualifies_for_free_shipping(
    shipping: ShippingSettings,
    *,
    subtotal: Decimal,
    categories: Iterable[str | None],
    region: str | None = None,
) -> bool:
    if not shipping.free_shipping_enabled:
        return False
    if subtotal < shipping.free_shipping_threshold:
        return False
    if shipping.free_shipping_applies_to == "specific" and shipping.free_shipping_regions:
        if not region or region not in shipping.free_shipping_regions:
            return False
    if not shipping.free_shipping_categories:
        return True
    # Every item must be in an allowed category.
    allowed = set(shipping.free_shipping_categories)
    return all(category in allowed for category in categories)
