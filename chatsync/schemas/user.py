from typing import Optional

from pydantic import BaseModel, EmailStr


class UserBase(BaseModel):

    email: EmailStr


class UserPublic(UserBase):

    id: str
    name: str
    mobile: Optional[str] = None
    profile_pic: Optional[str] = None

    @classmethod
    def from_document(cls, doc: dict) -> "UserPublic":
        return cls(
            id=str(doc["_id"]),
            name=doc.get("name") or "",
            email=doc["email"],
            mobile=doc.get("mobile"),
            profile_pic=doc.get("profile_pic"),
        )
