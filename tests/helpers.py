from bson import ObjectId


def asset_quantity(db, asset_id):
    return db["asset"].find_one({"_id": ObjectId(asset_id)})["quantity"]


def request_status(db, request_id):
    return db["assetrequest"].find_one({"_id": ObjectId(request_id)})["status"]
