"""Admin mutations on the content snapshot.

These mirror what the admin screens do to the document before handing it to
``SyncCoordinator.save``: add or edit an item, delete it, move products
between the shop and the archive, and record stock movements. All functions
mutate the snapshot in place and stamp the lifecycle timestamps.
"""

import logging
from typing import Any, Optional, Union

from shopsync.snapshot import (
    ITEM_SECTIONS,
    ContentSnapshot,
    Item,
    ItemId,
    new_item_id,
    utc_now_iso,
)

logger = logging.getLogger(__name__)


def _items(snapshot: ContentSnapshot, section: str) -> list[Item]:
    if section not in ITEM_SECTIONS:
        raise ValueError(f"Not an item collection: {section}")
    return snapshot.section(section)


def upsert_item(
    snapshot: ContentSnapshot,
    section: str,
    item: Union[Item, dict[str, Any]],
    index: Optional[int] = None,
) -> Item:
    """Add a new item, or replace the item at *index*.

    New items get a timestamp id and ``createdAt``. Edited items keep the id
    and ``createdAt`` of the entry they replace. Both get a fresh
    ``updatedAt``.

    Returns:
        The stored item
    """
    items = _items(snapshot, section)
    if not isinstance(item, Item):
        item = Item.model_validate(item)

    now = utc_now_iso()
    if index is None:
        if item.id is None:
            item.id = new_item_id()
        item.created_at = item.created_at or now
        item.updated_at = now
        items.append(item)
        logger.debug(f"Added {section} item {item.id}")
    else:
        existing = items[index]
        item.id = existing.id if existing.id is not None else new_item_id()
        item.created_at = existing.created_at or now
        item.updated_at = now
        if not item.images and existing.images:
            # Editing without new uploads keeps the current images
            item.set_images(existing.images)
        items[index] = item
        logger.debug(f"Updated {section} item {item.id}")

    return item


def delete_item(snapshot: ContentSnapshot, section: str, index: int) -> Item:
    """Remove and return the item at *index*."""
    item = _items(snapshot, section).pop(index)
    logger.debug(f"Deleted {section} item {item.id}")
    return item


def find_item(
    snapshot: ContentSnapshot, section: str, item_id: ItemId
) -> Optional[Item]:
    """Look up an item by id."""
    for item in _items(snapshot, section):
        if item.id == item_id:
            return item
    return None


def archive_item(snapshot: ContentSnapshot, index: int) -> Item:
    """Move the shop item at *index* to the archive."""
    item = snapshot.shop.pop(index)
    item.archived_at = utc_now_iso()
    snapshot.archive.append(item)
    logger.debug(f"Archived shop item {item.id}")
    return item


def unarchive_item(snapshot: ContentSnapshot, index: int) -> Item:
    """Move the archive item at *index* back to the shop."""
    item = snapshot.archive.pop(index)
    item.archived_at = None
    snapshot.shop.append(item)
    logger.debug(f"Unarchived item {item.id}")
    return item


def record_sale(snapshot: ContentSnapshot, item_id: ItemId, qty: int = 1) -> int:
    """Decrement the ``stock`` of a shop item.

    Items without a ``stock`` field are untracked and left alone.

    Returns:
        Remaining stock, or -1 for untracked items

    Raises:
        KeyError: No shop item with this id
        ValueError: Not enough stock
    """
    item = find_item(snapshot, "shop", item_id)
    if item is None:
        raise KeyError(f"No shop item with id {item_id}")

    stock = getattr(item, "stock", None)
    if stock is None:
        return -1
    if qty > stock:
        raise ValueError(f"Insufficient stock for {item_id}: {stock} < {qty}")

    item.stock = stock - qty
    item.updated_at = utc_now_iso()
    return item.stock
