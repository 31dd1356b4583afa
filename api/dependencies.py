"""API Dependencies - Authentication"""
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError

from domain.auth import User, UserInDB
from domain.enums import ActorRole
from domain.errors import PermissionDenied
from domain.value_objects import Actor
from infrastructure.security import decode_access_token, get_password_hash
from api.schemas import TokenData

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")

# Mock database for users
# In production, this would be a database call
_fake_users_db = {
    "operator": {
        "username": "operator",
        "full_name": "Platform Operator",
        "email": "operator@example.com",
        "plain_password": "operator123",  # Will be hashed on first access
        "disabled": False,
        "user_id": "U-OPERATOR",
        "role": ActorRole.OPERATOR,
    },
    "client1": {
        "username": "client1",
        "full_name": "Ana Client",
        "email": "client1@example.com",
        "plain_password": "client123",
        "disabled": False,
        "user_id": "U-CLIENT-1",
        "role": ActorRole.CLIENT,
    },
    "client2": {
        "username": "client2",
        "full_name": "Bruno Client",
        "email": "client2@example.com",
        "plain_password": "client123",
        "disabled": False,
        "user_id": "U-CLIENT-2",
        "role": ActorRole.CLIENT,
    },
    "supplier1": {
        "username": "supplier1",
        "full_name": "Catering Supplier",
        "email": "supplier1@example.com",
        "plain_password": "supplier123",
        "disabled": False,
        "user_id": "U-SUPPLIER-1",
        "role": ActorRole.SUPPLIER,
        "supplier_id": "S1",
    },
    "inactive": {
        "username": "inactive",
        "full_name": "Inactive Client",
        "email": "inactive@example.com",
        "plain_password": "inactive123",
        "disabled": True,
        "user_id": "U-INACTIVE",
        "role": ActorRole.CLIENT,
    },
}

# Public alias for backwards compatibility
fake_users_db = _fake_users_db

# Cache for hashed passwords
_password_hash_cache = {}

def _get_hashed_password(username: str) -> str:
    """Lazily hash passwords on first access"""
    if username not in _password_hash_cache:
        user = _fake_users_db.get(username)
        if user and "plain_password" in user:
            _password_hash_cache[username] = get_password_hash(user["plain_password"])
    return _password_hash_cache.get(username, "")

def get_user(db, username: str):
    if username in db:
        user_dict = db[username].copy()
        # Replace plain_password with hashed_password
        if "plain_password" in user_dict:
            user_dict["hashed_password"] = _get_hashed_password(username)
            del user_dict["plain_password"]
        return UserInDB(**user_dict)
    return None

async def get_current_user(token: str = Depends(oauth2_scheme)):
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = decode_access_token(token)
        username: str = payload.get("sub")
        if username is None:
            raise credentials_exception
        token_data = TokenData(username=username)
    except JWTError:
        raise credentials_exception

    user = get_user(_fake_users_db, username=token_data.username)
    if user is None:
        raise credentials_exception
    return user

async def get_current_active_user(current_user: User = Depends(get_current_user)):
    if current_user.disabled:
        raise HTTPException(status_code=400, detail="Inactive user")
    return current_user

async def get_current_actor(current_user: User = Depends(get_current_active_user)) -> Actor:
    return current_user.as_actor()

async def require_operator(actor: Actor = Depends(get_current_actor)) -> Actor:
    if actor.role != ActorRole.OPERATOR:
        raise PermissionDenied("Operator access required")
    return actor
