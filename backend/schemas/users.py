# Pydantic schemas for user-related requests/responses
# fastapi-users provides the base schemas; role is derived from is_superuser

import uuid

from fastapi_users import schemas


class UserRead(schemas.BaseUser[uuid.UUID]):
    role: str = "viewer"


class UserCreate(schemas.BaseUserCreate):
    pass


class UserUpdate(schemas.BaseUserUpdate):
    pass
