import logging
from typing import Any, Dict, Optional

from pymongo import ReturnDocument
from pymongo.database import Database

from database import now, parse_object_id
from errors import InsufficientStock, NotFound
from schemas import ASSET

logger = logging.getLogger(__name__)


def adjust(db: Database, asset_id: Any, delta: int) -> Dict:
    """Atomically add `delta` to the asset's available quantity."""
    asset = db[ASSET].find_one_and_update(
        {"_id": parse_object_id(asset_id, "asset ID")},
        {"$inc": {"quantity": int(delta)}, "$set": {"updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if asset is None:
        raise NotFound("Asset not found")
    return asset


def reserve(db: Database, asset_id: Any, quantity: int) -> Dict:
    """Take `quantity` out of stock, only if that leaves it non-negative."""
    oid = parse_object_id(asset_id, "asset ID")
    asset = db[ASSET].find_one_and_update(
        {"_id": oid, "quantity": {"$gte": quantity}},
        {"$inc": {"quantity": -quantity}, "$set": {"updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if asset is None:
        if db[ASSET].find_one({"_id": oid}, {"_id": 1}) is None:
            raise NotFound("Asset not found")
        raise InsufficientStock("Not enough asset quantity")
    logger.info("Reserved %d of asset %s, %d left", quantity, oid, asset["quantity"])
    return asset


def release(db: Database, asset_id: Any, quantity: int) -> Optional[Dict]:
    """Put `quantity` back. Unconditional: a deleted asset just gets nothing back."""
    asset = db[ASSET].find_one_and_update(
        {"_id": parse_object_id(asset_id, "asset ID")},
        {"$inc": {"quantity": int(quantity)}, "$set": {"updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if asset is None:
        logger.warning("Asset %s is gone, %d units not restocked", asset_id, quantity)
    return asset
