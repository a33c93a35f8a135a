from typing import Dict, Any, List, Optional
from guidance_portal.db.mongodb import db, store_call
from guidance_portal.schemas.user import Account, Capability
from datetime import datetime
from bson import ObjectId
from bson.errors import InvalidId

def _to_account(user: Dict[str, Any]) -> Account:
    return Account(
        uid=str(user["_id"]),
        studentId=user.get("studentId"),
        email=user["email"],
        displayName=user.get("displayName") or user.get("fullName", ""),
        capabilities=user.get("capabilities", [])
    )

@store_call
async def create_user(
    email: str,
    display_name: str,
    capabilities: List[Capability],
    student_id: Optional[str] = None
) -> Account:
    """
    Register a directory account (used by provisioning scripts and tests)
    """
    user_data = {
        "email": email,
        "displayName": display_name,
        "capabilities": [c.value for c in capabilities],
        "createdAt": datetime.utcnow(),
        "isActive": True
    }
    if student_id:
        user_data["studentId"] = student_id
    
    result = await db.db.users.insert_one(user_data)
    
    created_user = await db.db.users.find_one({"_id": result.inserted_id})
    return _to_account(created_user)

@store_call
async def get_user_by_id(user_id: str) -> Optional[Account]:
    """
    Get an account by its uid
    """
    try:
        object_id = ObjectId(user_id)
    except (InvalidId, TypeError):
        return None
    
    user = await db.db.users.find_one({"_id": object_id})
    return _to_account(user) if user else None

@store_call
async def get_user_by_student_id(student_id: str) -> Optional[Account]:
    """
    Get the account that owns a student identifier
    """
    user = await db.db.users.find_one({"studentId": student_id})
    return _to_account(user) if user else None

@store_call
async def list_users_by_capability(capability: Capability) -> List[Account]:
    """
    Get every account holding a capability, e.g. all counselors
    """
    cursor = db.db.users.find({"capabilities": capability.value, "isActive": {"$ne": False}})
    users = await cursor.to_list(length=None)
    return [_to_account(user) for user in users]
