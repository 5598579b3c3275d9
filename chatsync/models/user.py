from typing import Optional, TypedDict


class UserDocument(TypedDict, total=False):

    _id: str
    name: str
    email: str
    mobile: Optional[str]
    profile_pic: Optional[str]
