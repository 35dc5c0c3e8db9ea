from typing import Optional, TypedDict


class ProfileDocument(TypedDict, total=False):

    _id: str
    name: str
    profile_picture: Optional[str]
    role: Optional[str]
