"""
Users service for the Orderly platform.
"""

import math
import uuid
from typing import Any, Dict, List, Optional

from fastapi import Depends, Query
from starlette.concurrency import run_in_threadpool

from shared.auth import Identity, TokenService, identity_dependency
from shared.base_service import BaseService, utc_now_iso
from shared.config import ServiceConfig, get_config
from shared.envelope import ok
from shared.errors import AuthorizationError, ConflictError, InvalidCredentialsError, NotFoundError
from shared.storage import InMemoryRepository, Repository
from service_users.app.models import LoginRequest, RegisterRequest, UpdateProfileRequest, UserRole
from service_users.app.security import Argon2PasswordHasher


def sanitize_user(user: Dict[str, Any]) -> Dict[str, Any]:
    """Public view of a stored user."""
    return {key: value for key, value in user.items() if key != "passwordHash"}


def user_not_found() -> NotFoundError:
    return NotFoundError("USER_NOT_FOUND", "User not found")


class UsersService(BaseService):
    """Users service implementation."""

    display_name = "Users Service"

    def __init__(self, config: Optional[ServiceConfig] = None,
                 repository: Optional[Repository] = None,
                 password_hasher: Optional[Argon2PasswordHasher] = None):
        super().__init__("users", 8001, config)
        self.repository = repository if repository is not None else InMemoryRepository()
        self.password_hasher = password_hasher or Argon2PasswordHasher()
        self.token_service = TokenService(
            self.config.jwt_secret,
            algorithm=self.config.jwt_algorithm,
            ttl_seconds=self.config.token_ttl_seconds,
        )
        self.require_identity = identity_dependency(self.token_service)

        self._setup_user_routes()
        self.app.state.users_service = self

    async def _find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        wanted = email.lower()
        for user in await self.repository.list():
            if user["email"].lower() == wanted:
                return user
        return None

    async def _load_user(self, user_id: str) -> Dict[str, Any]:
        user = await self.repository.get(user_id)
        if user is None:
            self.logger.warning("User not found", user_id=user_id)
            raise user_not_found()
        return user

    async def register(self, payload: RegisterRequest) -> Dict[str, Any]:
        """Create a user account."""
        if await self._find_by_email(payload.email):
            self.logger.warning("User already exists", email=payload.email)
            raise ConflictError("USER_EXISTS", "User with this email already exists")

        now = utc_now_iso()
        user = {
            "id": str(uuid.uuid4()),
            "email": payload.email,
            "passwordHash": await run_in_threadpool(self.password_hasher.hash, payload.password),
            "name": payload.name,
            "roles": [role.value for role in payload.roles] or [UserRole.USER.value],
            "createdAt": now,
            "updatedAt": now,
        }
        await self.repository.put(user)

        self.logger.info("User registered successfully", user_id=user["id"], email=user["email"])
        self.metrics.record_business_event("user_registered")
        return {key: user[key] for key in ("id", "email", "name", "roles", "createdAt")}

    async def login(self, payload: LoginRequest) -> Dict[str, Any]:
        """Check credentials and issue a token."""
        user = await self._find_by_email(payload.email)
        if user is None:
            self.logger.warning("User not found", email=payload.email)
            raise InvalidCredentialsError()

        valid = await run_in_threadpool(self.password_hasher.verify, user["passwordHash"], payload.password)
        if not valid:
            self.logger.warning("Invalid password", email=payload.email)
            raise InvalidCredentialsError()

        token = self.token_service.issue_token(user["id"], user["email"], user["roles"])
        self.logger.info("User logged in successfully", user_id=user["id"])
        return {"token": token, "user": sanitize_user(user)}

    async def update_profile(self, identity: Identity, payload: UpdateProfileRequest) -> Dict[str, Any]:
        """Change name and/or email of the caller."""
        user = await self._load_user(identity.id)

        if payload.email is not None and payload.email.lower() != user["email"].lower():
            if await self._find_by_email(payload.email):
                self.logger.warning("Email already in use", email=payload.email)
                raise ConflictError("EMAIL_EXISTS", "Email already in use")

        user.update(payload.model_dump(exclude_none=True))
        user["updatedAt"] = utc_now_iso()
        await self.repository.put(user)

        self.logger.info("Profile updated", user_id=user["id"])
        return sanitize_user(user)

    async def list_users(self, page: int, limit: int, role: Optional[str]) -> Dict[str, Any]:
        users: List[Dict[str, Any]] = await self.repository.list()
        if role:
            users = [user for user in users if role in user["roles"]]

        start = (page - 1) * limit
        page_items = users[start:start + limit]
        self.logger.info("Users list retrieved", page=page, limit=limit, total=len(users))
        return {
            "users": [sanitize_user(user) for user in page_items],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": len(users),
                "totalPages": math.ceil(len(users) / limit),
            },
        }

    def _setup_user_routes(self):
        """Set up user routes."""

        @self.app.get("/users/health")
        async def users_health():
            """Service-prefixed health check."""
            return ok(await self._health_details())

        @self.app.post("/v1/users/register", status_code=201)
        async def register(payload: RegisterRequest):
            return ok(await self.register(payload))

        @self.app.post("/v1/users/login")
        async def login(payload: LoginRequest):
            return ok(await self.login(payload))

        @self.app.get("/v1/users/profile")
        async def get_profile(identity: Identity = Depends(self.require_identity)):
            user = await self._load_user(identity.id)
            self.logger.info("Profile retrieved", user_id=user["id"])
            return ok(sanitize_user(user))

        @self.app.put("/v1/users/profile")
        async def update_profile(payload: UpdateProfileRequest,
                                 identity: Identity = Depends(self.require_identity)):
            return ok(await self.update_profile(identity, payload))

        @self.app.get("/v1/users")
        async def list_users(
            identity: Identity = Depends(self.require_identity),
            page: int = Query(1, ge=1),
            limit: int = Query(10, ge=1, le=100),
            role: Optional[str] = Query(None),
        ):
            """List users (admin only)."""
            if not identity.is_admin:
                raise AuthorizationError("Insufficient permissions")
            return ok(await self.list_users(page, limit, role))

        @self.app.get("/v1/users/{user_id}")
        async def get_user(user_id: str):
            """Get a user by id; used by internal callers such as the gateway."""
            user = await self._load_user(user_id)
            self.logger.info("User retrieved", user_id=user["id"])
            return ok(sanitize_user(user))


def create_app(config: Optional[ServiceConfig] = None, repository: Optional[Repository] = None):
    """Create FastAPI application."""
    service = UsersService(config=config, repository=repository)
    return service.app


def main():
    service = UsersService(config=get_config("users", 8001))
    service.run()


if __name__ == "__main__":
    main()
