from typing import TypedDict


class ProductDocument(TypedDict, total=False):
    _id: str
    # owner profile id
    user_id: str
    name: str
