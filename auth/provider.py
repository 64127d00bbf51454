"""
auth/provider.py -- Credential provider backed by a key-value store.

KVStoreProvider answers three questions for a host application:
  - Is this username/password pair valid?          authenticate_user()
  - What does the stored user record look like?    get_user_details()
  - Which roles does the user hold?                get_user_roles()

and manages user records (create_user, set_user_details, set_user_password).

Collection and field names all come from ProviderConfig, so the provider fits
an existing data layout rather than imposing one. Suggested layout:

    users:      {"id": 7, "username": "alice", "password": "$2b$12$..."}
    roles:      {"id": 1, "role": "admin"}
    user_roles: {"user_id": 7, "role_id": 1}

Role resolution:
  The store has no join operator, so user -> roles is resolved in two steps:
  fetch the user's links by user id, then fetch the roles whose id appears in
  those links, and project role names in link order. No query text is built,
  so configured names never need quoting.

Security:
  [A1] An empty or missing stored password never authenticates, even against
       an empty supplied password. create_user() always writes "", so new
       accounts stay locked until set_user_password() is called.
  [A2] Unknown user, no password, and wrong password all return False. The
       cause is only visible in the log. The first two paths still run one
       hash verification against a dummy hash so response time does not
       reveal whether the username exists.

Errors:
  Usage errors (missing username) raise ValueError. Not-found is None. Store
  errors propagate unmodified -- no retry, no wrapping.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from auth.passwords import BcryptHasher, PasswordHasher
from core.config import ProviderConfig
from store.connections import get_store
from store.kv import KVStore, Record

logger = logging.getLogger("kvauth.auth.provider")

_DUMMY_PASSWORD = "kvauth_timing_dummy"


class KVStoreProvider:
    """Authentication provider that reads users and roles from a KVStore.

    Usage:
        provider = KVStoreProvider(ProviderConfig(users_path="accounts"))
        provider.create_user(username="alice", email="alice@example.com")
        provider.set_user_password("alice", "s3cret")
        provider.authenticate_user("alice", "s3cret")   # True
        provider.get_user_roles("alice")                # [] until roles are linked

    store is resolved from config.connection_name on first use unless one is
    passed in. hasher defaults to BcryptHasher().
    """

    def __init__(
        self,
        config: Optional[ProviderConfig] = None,
        hasher: Optional[PasswordHasher] = None,
        store: Optional[KVStore] = None,
    ) -> None:
        self.config = config or ProviderConfig()
        self.hasher: PasswordHasher = hasher or BcryptHasher()
        self._store = store
        self._dummy_hash: Optional[str] = None

    @property
    def store(self) -> KVStore:
        if self._store is None:
            self._store = get_store(self.config.connection_name)
        return self._store

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def authenticate_user(self, username: str, password: str) -> bool:
        """Return True only if username exists and password matches its stored hash [A1][A2]."""
        user = self.get_user_details(username)
        if user is None:
            self._equalize_timing(password)
            return False

        stored = user.get(self.config.users_password_key)
        if not stored:
            logger.info("Authentication denied for %s: no password set", username)
            self._equalize_timing(password)
            return False

        if not self.hasher.verify(password, stored):
            logger.info("Authentication denied for %s: password mismatch", username)
            return False
        return True

    def _equalize_timing(self, password: str) -> None:
        if self._dummy_hash is None:
            self._dummy_hash = self.hasher.hash(_DUMMY_PASSWORD)
        self.hasher.verify(password, self._dummy_hash)

    # ------------------------------------------------------------------
    # User records
    # ------------------------------------------------------------------

    def create_user(self, username: Optional[str] = None, **fields: Any) -> Record:
        """Insert a new user record and return it.

        Extra keyword arguments are stored verbatim. The password field is
        always written as "" [A1] -- a password passed here is discarded; use
        set_user_password() afterwards.

        Raises ValueError if username is missing or already taken.
        """
        if not username:
            raise ValueError("username needs to be specified for create_user")
        if self.get_user_details(username) is not None:
            raise ValueError(f"User {username!r} already exists")

        cfg = self.config
        record = {
            **fields,
            cfg.users_username_key: username,
            cfg.users_password_key: "",
        }
        created = self.store.quick_insert(cfg.users_path, record, id_key=cfg.users_id_key)
        logger.info("Created user %s", username)
        return created

    def get_user_details(self, username: Optional[str]) -> Record | None:
        """Return the user's record, or None if username is empty or unknown."""
        if not username:
            return None

        user = self.store.quick_select(self.config.users_path, {self.config.users_username_key: username})
        if user is None:
            logger.debug("No such user %s", username)
        return user

    def set_user_details(self, username: str, /, **update: Any) -> Record | None:
        """Apply a partial update to the user's record and return the updated record.

        Fields not named in update are left as they are. Returns None if the
        user does not exist. Raises ValueError if username is empty.
        """
        if not username:
            raise ValueError("Username to update needs to be specified")

        if self.get_user_details(username) is None:
            return None

        cfg = self.config
        self.store.quick_update(cfg.users_path, {cfg.users_username_key: username}, update)
        # The update may have renamed the user.
        return self.get_user_details(update.get(cfg.users_username_key, username))

    def set_user_password(self, username: str, password: str, /) -> Record | None:
        """Hash password and store it on the user's record."""
        encrypted = self.hasher.hash(password)
        return self.set_user_details(username, **{self.config.users_password_key: encrypted})

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def get_user_roles(self, username: str) -> list[str] | None:
        """Return the names of the roles linked to the user, or None if the user does not exist.

        A user with no role links gets an empty list. Links that point at a
        missing role are skipped. Order follows the links as the store returns
        them.

        Raises RuntimeError if roles are disabled for this provider.
        """
        self._require_roles()
        cfg = self.config

        user = self.get_user_details(username)
        if user is None:
            return None

        links = self.store.quick_select_all(
            cfg.user_roles_path, {cfg.user_roles_user_id_key: user.get(cfg.users_id_key)}
        )
        role_ids = [link[cfg.user_roles_role_id_key] for link in links if cfg.user_roles_role_id_key in link]
        if not role_ids:
            return []

        names_by_id: list[tuple[Any, str]] = [
            (role[cfg.roles_id_key], role[cfg.roles_role_key])
            for role in self.store.quick_select_in(cfg.roles_path, cfg.roles_id_key, role_ids)
            if cfg.roles_role_key in role
        ]
        return [name for role_id in role_ids for rid, name in names_by_id if rid == role_id]

    def user_has_role(self, username: str, role: str) -> bool:
        """Return True if the user holds role. Unknown users hold no roles."""
        roles = self.get_user_roles(username)
        return roles is not None and role in roles

    def _require_roles(self) -> None:
        if self.config.disable_roles:
            raise RuntimeError("Roles are disabled for this provider (disable_roles is set)")
