"""Context store for the drg CLI.

The store is a YAML document holding every known context plus the name of
the active one. It is loaded once per invocation, mutated in memory and
written back once at the end when something changed.
"""

from __future__ import annotations

import base64
import logging
import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Annotated, Literal, Optional, Union
from urllib.parse import urlparse

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    ValidationError,
    field_validator,
    model_validator,
)

from drg.certificates.schemas import SignAlgo
from drg.errors import ConfigIssueError, ContextConflictError, ContextNotFoundError, InvalidInputError

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV_VAR = "DRGCFG"
CONTEXT_ENV_VAR = "DRG_CONTEXT"
APP_ENV_VAR = "DRG_APP"
CONFIG_FILE_NAME = "drg_config.yaml"
TOKEN_REFRESH_MARGIN = timedelta(seconds=30)


class OAuthToken(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["oauth"] = "oauth"
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    token_type: str = "Bearer"

    def authorization_header(self) -> str:
        return f"Bearer {self.access_token}"

    def display_token(self) -> str:
        return self.access_token


class AccessToken(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["access_token"] = "access_token"
    id: str
    token: str

    def authorization_header(self) -> str:
        raw = f"{self.id}:{self.token}".encode("utf-8")
        return f"Basic {base64.b64encode(raw).decode('ascii')}"

    def display_token(self) -> str:
        return self.token


Credential = Annotated[Union[OAuthToken, AccessToken], Field(discriminator="type")]


def _check_absolute_url(value: str) -> str:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(f"not an absolute http(s) URL: {value}")
    return value


class Context(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1)
    drogue_cloud_url: str
    default_app: Optional[str] = None
    default_algo: Optional[SignAlgo] = None
    token: Credential
    token_url: str
    auth_url: str
    registry_url: str
    token_exp_date: Optional[datetime] = None

    @field_validator("drogue_cloud_url", "token_url", "auth_url", "registry_url")
    @classmethod
    def _absolute_url(cls, value: str) -> str:
        return _check_absolute_url(value)

    def authorization_header(self) -> str:
        return self.token.authorization_header()

    def needs_refresh(self, now: datetime | None = None) -> bool:
        """Return whether the OAuth access token expires within the refresh margin."""
        if not isinstance(self.token, OAuthToken):
            return False
        if self.token_exp_date is None:
            return False
        current = now or datetime.now(timezone.utc)
        return self.token_exp_date - current < TOKEN_REFRESH_MARGIN

    def set_oauth_token(self, token: OAuthToken, now: datetime | None = None) -> None:
        issued = now or datetime.now(timezone.utc)
        self.token = token
        if token.expires_in is not None:
            self.token_exp_date = issued + timedelta(seconds=token.expires_in)
        else:
            self.token_exp_date = None


class ContextStore(BaseModel):
    model_config = ConfigDict(extra="forbid")

    active_context: str = ""
    contexts: list[Context] = Field(default_factory=list)

    _changed: bool = PrivateAttr(default=False)

    @model_validator(mode="after")
    def _check_store(self) -> "ContextStore":
        names = [ctx.name for ctx in self.contexts]
        if len(names) != len(set(names)):
            raise ValueError("context names must be unique")
        if self.active_context and self.active_context not in names:
            raise ValueError(f"active context {self.active_context} does not exist")
        return self

    @classmethod
    def empty(cls) -> "ContextStore":
        return cls()

    @property
    def changed(self) -> bool:
        return self._changed

    def mark_changed(self) -> None:
        self._changed = True

    def _find(self, name: str) -> int | None:
        for index, ctx in enumerate(self.contexts):
            if ctx.name == name:
                return index
        return None

    def list_contexts(self) -> list[str]:
        return [ctx.name for ctx in self.contexts]

    def get_context(self, name: str | None = None) -> Context:
        target = name or self.active_context
        if not target:
            raise ContextNotFoundError()
        index = self._find(target)
        if index is None:
            raise ContextNotFoundError(target)
        return self.contexts[index]

    def add_context(self, context: Context) -> str:
        index = self._find(context.name)
        if index is None:
            self.contexts.append(context)
            if not self.active_context:
                self.active_context = context.name
            message = f"Added context {context.name}"
        else:
            logger.warning("A context named %s already exists, it will be replaced", context.name)
            self.contexts[index] = context
            message = f"Replaced existing context {context.name}"
        self.mark_changed()
        return message

    def set_active_context(self, name: str) -> None:
        if self._find(name) is None:
            raise ContextNotFoundError(name)
        self.active_context = name
        self.mark_changed()

    def delete_context(self, name: str) -> None:
        index = self._find(name)
        if index is None:
            raise ContextNotFoundError(name)
        del self.contexts[index]
        if self.active_context == name:
            self.active_context = self.contexts[0].name if self.contexts else ""
            if self.active_context:
                logger.warning("Active context is now %s", self.active_context)
        self.mark_changed()

    def rename_context(self, old: str, new: str) -> None:
        if not new.strip():
            raise InvalidInputError("Context name cannot be empty")
        if self._find(new) is not None:
            raise ContextConflictError(new)
        index = self._find(old)
        if index is None:
            raise ContextNotFoundError(old)
        self.contexts[index].name = new
        if self.active_context == old:
            self.active_context = new
        self.mark_changed()

    def set_default_app(self, app: str, name: str | None = None) -> str:
        context = self.get_context(name)
        context.default_app = app
        self.mark_changed()
        return context.name

    def set_default_algo(self, algo: SignAlgo, name: str | None = None) -> str:
        context = self.get_context(name)
        context.default_algo = algo
        self.mark_changed()
        return context.name


def default_config_path() -> Path:
    xdg = os.getenv("XDG_CONFIG_HOME")
    root = Path(xdg) if xdg else Path.home() / ".config"
    return root / CONFIG_FILE_NAME


def resolve_config_path(path: str | Path | None = None) -> Path:
    if path:
        return Path(path).expanduser()
    env_path = os.getenv(CONFIG_PATH_ENV_VAR)
    if env_path and env_path.strip():
        return Path(env_path.strip()).expanduser()
    return default_config_path()


def load_config(path: str | Path | None = None) -> ContextStore:
    config_path = resolve_config_path(path)
    if not config_path.exists():
        raise ConfigIssueError(
            f"config file {config_path} not found. Use `drg login` to create a context"
        )
    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigIssueError(f"cannot read {config_path}: {exc}") from exc
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigIssueError(f"{config_path} must contain a YAML mapping")
    try:
        store = ContextStore.model_validate(raw)
    except ValidationError as exc:
        raise ConfigIssueError(f"invalid config file {config_path}: {exc}") from exc
    logger.debug("Loaded %d context(s) from %s", len(store.contexts), config_path)
    return store


def _chmod_owner_only(path: Path) -> None:
    if os.name != "posix":
        return
    path.chmod(0o600)


def save_config(store: ContextStore, path: str | Path | None = None) -> Path:
    config_path = resolve_config_path(path)
    payload = store.model_dump(mode="json", exclude_none=True)
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{config_path.name}.", suffix=".tmp", dir=config_path.parent
        )
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                yaml.safe_dump(payload, handle, sort_keys=False)
            _chmod_owner_only(tmp_path)
            os.replace(tmp_path, config_path)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise
    except OSError as exc:
        raise ConfigIssueError(f"cannot write {config_path}: {exc}") from exc
    store._changed = False
    logger.debug("Saved config to %s", config_path)
    return config_path
