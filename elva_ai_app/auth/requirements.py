# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# auth/requirements.py
import logging
from abc import abstractmethod, ABCMeta
from typing import Optional, Tuple

from pydantic import BaseModel

logger = logging.getLogger("Auth")

HTTP_401_UNAUTHORIZED = 401
HTTP_403_FORBIDDEN = 403

PLATFORM_ADMIN_ROLE = "elva:role:platform-admin"

class User(BaseModel):
    username: str = None
    email: Optional[str] = None
    name: Optional[str] = None
    roles: Optional[list] = []
    permissions: Optional[list] = []

    @property
    def id(self):
        return self.username

class AuthorizationError(Exception):
    """Raised when authorization fails"""
    def __init__(self, message: str, code: int = HTTP_403_FORBIDDEN):
        self.message = message
        self.code = code
        super().__init__(message)


class RequirementValidationError:
    message: str
    code: int

    def __init__(self, message: str, code: int = 400):
        self.message = message
        self.code = code


class RequirementBase(BaseModel, metaclass=ABCMeta):
    class Config:
        # Forbid any extra attributes on requirements
        extra = "forbid"

    @abstractmethod
    def validate_requirement(self, user: User) -> Optional[RequirementValidationError]:
        raise NotImplementedError


class RequireUser(RequirementBase):
    def validate_requirement(self, user: "User") -> Optional[RequirementValidationError]:
        if user is None:
            return RequirementValidationError("User is required.", HTTP_401_UNAUTHORIZED)
        return None


class RequireRoles(RequirementBase):
    roles: Tuple[str, ...]
    require_all: bool = True

    def __init__(self, /, *roles: str, require_all: bool = True):
        super().__init__(roles=roles, require_all=require_all)

    def validate_requirement(self, user: "User") -> Optional[RequirementValidationError]:
        if user is None:
            return RequirementValidationError("User is required.", HTTP_401_UNAUTHORIZED)

        if not self.roles:
            logger.warning(f"{self} has no roles to check")
            return None

        if not user.roles:
            return RequirementValidationError("User has no roles assigned.", HTTP_403_FORBIDDEN)

        required = set(self.roles)
        actual = set(user.roles)

        if self.require_all:
            missing = required - actual
            if missing:
                return RequirementValidationError(
                    f"User missing required roles: {', '.join(sorted(missing))}",
                    HTTP_403_FORBIDDEN
                )
        else:
            if not (required & actual):
                return RequirementValidationError(
                    f"User must have at least one of these roles: {', '.join(sorted(required))}",
                    HTTP_403_FORBIDDEN
                )

        return None


def validate_requirements(user: Optional[User], *requirements: RequirementBase, require_all: bool = True) -> None:
    """
    Validate that a user meets the specified requirements.

    Args:
        user: The user to validate
        requirements: List of requirements to check
        require_all: If True, all requirements must be met. If False, at least one must be met.

    Raises:
        AuthorizationError: If authorization fails
    """
    if require_all:
        for requirement in requirements:
            validation_error = requirement.validate_requirement(user)
            if validation_error:
                raise AuthorizationError(validation_error.message, validation_error.code)
        return

    last_validation_error = None
    for requirement in requirements:
        validation_error = requirement.validate_requirement(user)
        if validation_error:
            last_validation_error = validation_error
        else:
            return

    if last_validation_error:
        raise AuthorizationError(last_validation_error.message, last_validation_error.code)


def is_platform_admin(user: Optional[User], role: str = PLATFORM_ADMIN_ROLE) -> bool:
    return RequireRoles(role).validate_requirement(user) is None
