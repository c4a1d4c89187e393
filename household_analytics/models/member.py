from typing import Optional

from pydantic import BaseModel


class FamilyMember(BaseModel):
    id: str
    family_id: Optional[str] = None
    full_name: str
    role: Optional[str] = None  # father, mother, child, other
