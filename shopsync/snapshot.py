"""Content tree models for the synchronized site document.

The whole site content (shop, archive, gallery, categories, orders) lives in a
single JSON document that is mirrored between the local cache and the remote
store. These models normalize whatever arrives from either side:

- absent or ``null`` collections become empty lists
- Firebase "arrays" delivered as ``{"0": ..., "1": ...}`` objects become lists
- ``null`` holes inside collections are dropped
- ``images[0]`` is mirrored into the legacy singular ``image`` field

Field names on the wire stay camelCase so the storefront pages can keep
reading the same document.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

logger = logging.getLogger(__name__)

# Collections that hold catalog items
ITEM_SECTIONS = ("shop", "archive", "gallery")

COLLECTIONS = ITEM_SECTIONS + ("categories", "orders")

ItemId = Union[int, str]


def utc_now_iso() -> str:
    """Current UTC time in the ``Date.toISOString()`` format."""
    return (
        datetime.now(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def new_item_id() -> int:
    """Millisecond timestamp used as the id of newly created items.

    Two items created in the same millisecond collide; that is accepted.
    """
    return int(time.time() * 1000)


def _as_list(value: Any) -> list:
    """Coerce a remote collection value into a list without holes."""
    if value is None:
        return []
    if isinstance(value, list):
        return [entry for entry in value if entry is not None]
    if isinstance(value, dict):
        # Firebase returns sparse arrays as objects keyed by index
        keys = list(value.keys())
        if all(str(k).isdigit() for k in keys):
            keys.sort(key=lambda k: int(k))
        return [value[k] for k in keys if value[k] is not None]
    logger.warning(f"Expected a list, got {type(value).__name__}; using []")
    return []


def mirror_primary_image(
    data: dict[str, Any], promote_image: bool = True
) -> dict[str, Any]:
    """Keep ``image`` equal to ``images[0]`` on a raw item dict.

    With *promote_image*, items that only carry the legacy ``image`` field get
    ``images = [image]``. Without it ``images`` wins and a stale ``image`` is
    dropped.
    """
    data = dict(data)
    images = data.get("images")
    if isinstance(images, str):
        images = [images]
    images = [img for img in _as_list(images) if img]

    if images:
        data["image"] = images[0]
    elif promote_image and data.get("image"):
        images = [data["image"]]
    else:
        data.pop("image", None)

    data["images"] = images
    return data


class Item(BaseModel):
    """A shop, archive or gallery entry.

    Unknown fields (``teepublicLink``, ``designBy``, ``stock``, ...) are kept
    as extras so older and newer admin panels can share the document.
    """

    model_config = ConfigDict(
        extra="allow", populate_by_name=True, coerce_numbers_to_str=True
    )

    id: Optional[ItemId] = None
    name: Optional[str] = None
    title: Optional[str] = None
    price: Optional[Union[int, float]] = None
    description: Optional[str] = None
    category: Optional[str] = None
    images: list[str] = Field(default_factory=list)
    image: Optional[str] = None
    created_at: Optional[str] = Field(None, alias="createdAt")
    updated_at: Optional[str] = Field(None, alias="updatedAt")
    archived_at: Optional[str] = Field(None, alias="archivedAt")

    @model_validator(mode="before")
    @classmethod
    def _mirror_images(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return mirror_primary_image(data)
        return data

    @property
    def display_name(self) -> str:
        """Name for shop items, title for gallery/archive items."""
        return self.name or self.title or ""

    def set_images(self, images: list[str]) -> None:
        """Replace the image list, keeping ``image`` in step."""
        self.images = [img for img in images if img]
        self.image = self.images[0] if self.images else None

    def to_dict(self) -> dict[str, Any]:
        return mirror_primary_image(
            self.model_dump(
                mode="json", by_alias=True, exclude_none=True, warnings=False
            ),
            promote_image=False,
        )


class Category(BaseModel):
    """Free-form category record."""

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    id: Optional[ItemId] = None
    name: Optional[str] = None


class Order(BaseModel):
    """Free-form order record; payment details are owned elsewhere."""

    model_config = ConfigDict(
        extra="allow", populate_by_name=True, coerce_numbers_to_str=True
    )

    id: Optional[ItemId] = None
    status: Optional[str] = None
    items: list[dict[str, Any]] = Field(default_factory=list)
    total: Optional[Union[int, float]] = None
    created_at: Optional[str] = Field(None, alias="createdAt")


_SECTION_MODELS: dict[str, type[BaseModel]] = {
    "shop": Item,
    "archive": Item,
    "gallery": Item,
    "categories": Category,
    "orders": Order,
}


def _validate_entries(section: str, raw: Any) -> list[BaseModel]:
    """Validate entries one by one so a single bad record doesn't wipe a list.

    Records that fail validation are kept unvalidated, so the next full
    document write sends them back unchanged instead of deleting them.
    Only non-object entries are dropped.
    """
    model = _SECTION_MODELS[section]
    entries = []
    for entry in _as_list(raw):
        if isinstance(entry, model):
            entries.append(entry)
            continue
        if not isinstance(entry, dict):
            logger.warning(f"Dropping non-object {section} entry: {entry!r}")
            continue
        try:
            entries.append(model.model_validate(entry))
        except ValidationError as e:
            logger.warning(f"Keeping {section} entry unvalidated: {e}")
            if model is Item:
                entry = mirror_primary_image(entry)
            entries.append(model.model_construct(**entry))
    return entries


class ContentSnapshot(BaseModel):
    """The entire synchronized document."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    shop: list[Item] = Field(default_factory=list)
    archive: list[Item] = Field(default_factory=list)
    gallery: list[Item] = Field(default_factory=list)
    categories: list[Category] = Field(default_factory=list)
    orders: list[Order] = Field(default_factory=list)
    #: Revision stamped by the coordinator on every outbound write
    sync_revision: Optional[str] = Field(None, alias="syncRevision")

    @model_validator(mode="before")
    @classmethod
    def _default_collections(cls, data: Any) -> Any:
        if data is None:
            return {}
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for section in COLLECTIONS:
            data[section] = _validate_entries(section, data.get(section))
        return data

    @classmethod
    def from_remote(cls, data: Any) -> "ContentSnapshot":
        """Build a snapshot from an untrusted payload; never raises.

        Anything that isn't a JSON object yields the empty default.
        """
        if data is None:
            return cls()
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Unusable content payload, using empty snapshot: {e}")
            return cls()

    def section(self, name: str) -> list:
        """Return the list backing collection *name*."""
        if name not in COLLECTIONS:
            raise ValueError(f"Unknown collection: {name}")
        return getattr(self, name)

    def to_dict(self) -> dict[str, Any]:
        """Plain JSON tree with camelCase keys and every collection present."""
        data = self.model_dump(
            mode="json", by_alias=True, exclude_none=True, warnings=False
        )
        for section in ITEM_SECTIONS:
            data[section] = [
                mirror_primary_image(item, promote_image=False)
                for item in data[section]
            ]
        return data
