from pydantic import BaseModel, EmailStr
from typing import Optional, List
from enum import Enum

class Capability(str, Enum):
    STUDENT = "student"
    COUNSELOR = "counselor"

class Account(BaseModel):
    """A user directory entry, resolved once at the directory boundary."""
    uid: str
    studentId: Optional[str] = None
    email: EmailStr
    displayName: str
    capabilities: List[Capability] = []
    
    def has_capability(self, capability: Capability) -> bool:
        return capability in self.capabilities
    
    @property
    def is_counselor(self) -> bool:
        return self.has_capability(Capability.COUNSELOR)
