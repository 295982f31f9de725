# auction_pipeline/adapters.py
"""Conversion between upstream rows, stored `SaleRecord`s and the public row shape.

Copart and IAAI rows arrive with slightly different field names. Everything
that touches those differences lives here so the cache and collection code
only ever see the canonical column set.
"""
import json
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from .schemas import Site
from .utils import get_logger

logger = get_logger(__name__)

PUBLIC_FIELDS = (
    "lot_id", "site", "base_site", "vin", "year", "make", "model", "series", "trim",
    "odometer", "damage_primary", "damage_secondary", "title_status", "has_keys",
    "transmission", "drive", "fuel", "color", "sale_status", "sale_date",
    "purchase_price", "current_bid", "auction_location", "link", "created_at",
)


def parse_sale_date(value):
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip().replace("Z", "+00:00")
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            logger.debug("Unparsable sale_date %r", value)
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _decimal(value):
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def _int(value):
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _has_keys(raw):
    keys = raw.get("keys")
    if isinstance(keys, str):
        return keys.strip().lower() == "yes"
    if "vehicle_has_keys" in raw:
        return bool(raw["vehicle_has_keys"])
    return bool(keys) if keys is not None else None


def _images_json(raw):
    images = raw.get("link_img_hd") or raw.get("images")
    if not images:
        return None
    if isinstance(images, str):
        # already serialized upstream
        return images
    return json.dumps(list(images))


def to_record_values(raw, site, make=None, model=None, created_at=None):
    """Map one upstream row to insertable `SaleRecord` column values.

    Raises ValueError when the row carries no lot id.
    """
    site = Site(int(site))
    lot_id = _int(raw.get("lot_id") or raw.get("id"))
    if lot_id is None:
        raise ValueError("lot_id missing")
    values = {
        "lot_id": lot_id,
        "site": int(site),
        "base_site": raw.get("base_site") or site.label,
        "vin": raw.get("vin") or "",
        "year": _int(raw.get("year")),
        "make": raw.get("make") or make,
        "model": raw.get("model") or model or None,
        "series": raw.get("series"),
        "trim": raw.get("trim") or raw.get("series"),
        "odometer": _int(raw.get("odometer") or raw.get("vehicle_mileage")),
        "damage_primary": raw.get("damage_pr") or raw.get("vehicle_damage"),
        "damage_secondary": raw.get("damage_sec"),
        "title_status": raw.get("title") or raw.get("document") or raw.get("vehicle_title"),
        "has_keys": _has_keys(raw),
        "transmission": raw.get("transmission"),
        "drive": raw.get("drive"),
        "fuel": raw.get("fuel"),
        "color": raw.get("color"),
        "sale_status": raw.get("sale_status") or raw.get("status") or "Unknown",
        "sale_date": parse_sale_date(raw.get("sale_date")) or datetime.now(timezone.utc),
        "purchase_price": _decimal(raw.get("purchase_price")),
        "current_bid": _decimal(raw.get("current_bid")),
        "auction_location": raw.get("auction_location") or raw.get("location"),
        "images": _images_json(raw),
        "link": raw.get("link"),
    }
    if created_at is not None:
        values["created_at"] = created_at
    return values


def decode_images(value):
    """Decode the stored images column. Bad JSON yields an empty list."""
    if value is None or value == "":
        return []
    if isinstance(value, list):
        return value
    try:
        parsed = json.loads(value)
    except (TypeError, ValueError):
        logger.warning("Error parsing cached images: %.80s", value)
        return []
    return parsed if isinstance(parsed, list) else [parsed]


def record_to_dict(record):
    """Public shape of a stored record; both sites expose images as `link_img_hd`."""
    out = {name: getattr(record, name) for name in PUBLIC_FIELDS}
    for name in ("purchase_price", "current_bid"):
        if out[name] is not None:
            out[name] = float(out[name])
    out["link_img_hd"] = decode_images(record.images)
    return out
