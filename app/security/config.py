"""
Access-policy YAML loader.

Shape:

    access_policy:
      auth:
        authorization_header: Authorization
        bearer_prefix: Bearer
      public:
        - path: /health
          methods: [GET]
      roles:
        ReadOnly:
          capabilities: [read]
        Respond:
          extends: ReadOnly
          capabilities: [respond]
      company:
        member: [read]
        admin: [read, write, ...]
      self: [read, write]

Role inheritance (`extends`) is resolved at load time; unknown parents,
unknown capabilities and inheritance cycles are rejected.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from app.models.security import ProgramRole
from app.security.context import Action

logger = logging.getLogger(__name__)

KNOWN_CAPABILITIES = frozenset(a.value for a in Action)


class AccessPolicyError(ValueError):
    """Raised when the access-policy YAML is invalid."""


class AuthConfig(BaseModel):
    authorization_header: str = "Authorization"
    bearer_prefix: str = "Bearer"


class PublicRoute(BaseModel):
    path: str
    methods: list[str] = Field(default_factory=lambda: ["GET"])

    def normalized_methods(self) -> set[str]:
        return {m.upper() for m in self.methods}


class RoleModel(BaseModel):
    extends: str | None = None
    description: str | None = None
    capabilities: list[str] = Field(default_factory=list)


class CompanyGrants(BaseModel):
    member: list[str] = Field(default_factory=list)
    admin: list[str] = Field(default_factory=list)


class AccessPolicyModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    auth: AuthConfig = Field(default_factory=AuthConfig)
    public: list[PublicRoute] = Field(default_factory=list)
    roles: dict[str, RoleModel] = Field(default_factory=dict)
    company: CompanyGrants = Field(default_factory=CompanyGrants)
    self_access: list[str] = Field(default_factory=list, alias="self")


def _path_template_to_regex(path_template: str) -> re.Pattern[str]:
    # "/sessions/{id}" -> r"^/sessions/[^/]+$"
    regex = re.sub(r"\{[^/]+\}", r"[^/]+", path_template)
    return re.compile(rf"^{regex}$")


def _check_capabilities(where: str, capabilities: list[str]) -> frozenset[str]:
    unknown = set(capabilities) - KNOWN_CAPABILITIES
    if unknown:
        raise AccessPolicyError(f"{where} references unknown capabilities: {sorted(unknown)}")
    return frozenset(capabilities)


def _resolve_roles(roles: Mapping[str, RoleModel]) -> dict[str, frozenset[str]]:
    """
    Resolve `extends` chains into effective capability sets per role.

    Raises AccessPolicyError on unknown parents or cycles.
    """

    for name, role in roles.items():
        if role.extends and role.extends not in roles:
            raise AccessPolicyError(f"role {name!r} extends unknown role {role.extends!r}")

    effective: dict[str, frozenset[str]] = {}
    visiting: set[str] = set()

    def dfs(name: str) -> frozenset[str]:
        if name in effective:
            return effective[name]
        if name in visiting:
            raise AccessPolicyError(f"cycle detected in role inheritance at {name!r}")
        visiting.add(name)
        role = roles[name]
        caps = set(_check_capabilities(f"role {name!r}", role.capabilities))
        if role.extends:
            caps.update(dfs(role.extends))
        visiting.remove(name)
        effective[name] = frozenset(caps)
        return effective[name]

    for name in roles:
        dfs(name)
    return effective


class AccessPolicy:
    """
    Runtime view of a validated policy: effective capabilities per grant and
    public-route matching.
    """

    def __init__(self, model: AccessPolicyModel) -> None:
        self.model = model
        self._role_capabilities = _resolve_roles(model.roles)

        missing = {r.value for r in ProgramRole} - set(self._role_capabilities)
        if missing:
            raise AccessPolicyError(f"policy does not define program roles: {sorted(missing)}")

        self._company_member = _check_capabilities("company.member", model.company.member)
        self._company_admin = _check_capabilities("company.admin", model.company.admin)
        self._self = _check_capabilities("self", model.self_access)

        self._public = [(_path_template_to_regex(r.path), r.normalized_methods()) for r in model.public]

    @property
    def auth(self) -> AuthConfig:
        return self.model.auth

    @property
    def company_member_capabilities(self) -> frozenset[str]:
        return self._company_member

    @property
    def company_admin_capabilities(self) -> frozenset[str]:
        return self._company_admin

    @property
    def self_capabilities(self) -> frozenset[str]:
        return self._self

    def role_capabilities(self, role: str | None) -> frozenset[str]:
        if role is None:
            return frozenset()
        return self._role_capabilities.get(role, frozenset())

    def roles_with(self, capability: str) -> frozenset[str]:
        return frozenset(name for name, caps in self._role_capabilities.items() if capability in caps)

    def is_public(self, path: str, method: str) -> bool:
        method = method.upper()
        return any(method in methods and regex.match(path) for regex, methods in self._public)


def load_access_policy(path: Path) -> AccessPolicy:
    raw_text = path.read_text(encoding="utf-8")
    raw: dict[str, Any] = yaml.safe_load(raw_text) or {}

    if "access_policy" not in raw:
        raise AccessPolicyError(f"Missing top-level 'access_policy' key in config: {path}")

    try:
        model = AccessPolicyModel.model_validate(raw["access_policy"] or {})
    except PydanticValidationError as exc:
        raise AccessPolicyError(f"Invalid access policy {path}: {exc}") from exc

    policy = AccessPolicy(model)
    logger.debug("Loaded access policy roles=%s", sorted(model.roles))
    return policy
