# opportunity_api/services/policy_store.py
"""
Policy store: the single read/write contract for policy documents.

Both documents (cleanup and access) are stored as JSON under well-known keys
in `system_settings`. Every save bumps the document version. Reads may be
served from a short in-process TTL cache (POLICY_CACHE_TTL_SECONDS); a save
always invalidates it, so a reader in the same process observes the latest
save immediately and other processes within the TTL.

Evaluators never read the store themselves: callers load a config here and
pass it in explicitly.
"""

import logging
from typing import Any

from cachetools import TTLCache
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from opportunity_api.config import get_settings
from opportunity_api.constants import PolicyKeys
from opportunity_api.database import STORE_UNAVAILABLE_ERRORS
from opportunity_api.errors import ConfigurationError, StoreUnavailableError, ValidationError
from opportunity_api.models import SystemSetting
from opportunity_api.schemas.policy import (
    AccessConfig,
    AccessPolicyResponse,
    CleanupConfig,
    CleanupPolicyResponse,
)
from opportunity_api.utils.timeutil import as_utc, utcnow

logger = logging.getLogger(__name__)

_CACHE_TTL_SECONDS = get_settings().POLICY_CACHE_TTL_SECONDS
_policy_cache: TTLCache = TTLCache(maxsize=8, ttl=max(_CACHE_TTL_SECONDS, 1))


def invalidate_policy_cache() -> None:
    """Drop every cached policy document."""
    _policy_cache.clear()


def _merge_base_version(base: dict[str, Any], expected_version: int | None) -> int:
    """
    Version a merge save must find in the store.

    A merge is built on `base`, so the save must fail if anyone wrote after
    it was read. A caller-supplied version must also match that base.
    """
    key, version = base["key"], base["version"]
    if expected_version is not None and expected_version != version:
        raise ValidationError(
            f"Policy '{key}' changed since it was read (expected version {expected_version}, found {version})",
            field="expected_version",
        )
    return version


def _configuration_error(exc: PydanticValidationError) -> ConfigurationError:
    """Name the first offending field of a pydantic validation failure."""
    first = exc.errors()[0]
    loc = [str(part) for part in first.get("loc", ()) if part != "[key]"]
    field = ".".join(loc) or "document"
    return ConfigurationError(field, first.get("msg", "invalid value"))


class PolicyStore:
    """
    Read/write access to the cleanup and access policy documents.

    Usage:
        store = PolicyStore(db)
        config = store.get_cleanup_config()
        store.update_cleanup_config({"grace_days_after_deadline": 3}, updated_by="admin")
    """

    _MODELS: dict[str, type[BaseModel]] = {
        PolicyKeys.CLEANUP: CleanupConfig,
        PolicyKeys.ACCESS: AccessConfig,
    }

    def __init__(self, db: Session):
        self.db = db

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_cleanup_config(self) -> CleanupConfig:
        return self._load(PolicyKeys.CLEANUP)["config"]

    def get_access_config(self) -> AccessConfig:
        return self._load(PolicyKeys.ACCESS)["config"]

    def get_cleanup_policy(self) -> CleanupPolicyResponse:
        return CleanupPolicyResponse(**self._load(PolicyKeys.CLEANUP))

    def get_access_policy(self) -> AccessPolicyResponse:
        return AccessPolicyResponse(**self._load(PolicyKeys.ACCESS))

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def save_cleanup_config(
        self,
        document: dict[str, Any],
        updated_by: str | None = None,
        expected_version: int | None = None,
    ) -> CleanupPolicyResponse:
        """Replace the cleanup document. Missing categories fall back to defaults."""
        config = self._validate(PolicyKeys.CLEANUP, document)
        return CleanupPolicyResponse(**self._save(PolicyKeys.CLEANUP, config, updated_by, expected_version))

    def update_cleanup_config(
        self,
        changes: dict[str, Any],
        updated_by: str | None = None,
        expected_version: int | None = None,
    ) -> CleanupPolicyResponse:
        """
        Apply a partial change to the cleanup document.

        Only fields present in `changes` are updated; category entries in
        `max_age_days_by_category` are merged into the current map.
        """
        base = self._load(PolicyKeys.CLEANUP, fresh=True)
        current = base["config"].model_dump(mode="json")
        merged = {**current, **changes}
        if isinstance(changes.get("max_age_days_by_category"), dict):
            merged["max_age_days_by_category"] = {
                **current["max_age_days_by_category"],
                **changes["max_age_days_by_category"],
            }
        return self.save_cleanup_config(
            merged, updated_by=updated_by, expected_version=_merge_base_version(base, expected_version)
        )

    def save_access_config(
        self,
        document: dict[str, Any],
        updated_by: str | None = None,
        expected_version: int | None = None,
    ) -> AccessPolicyResponse:
        """Replace the access document."""
        config = self._validate(PolicyKeys.ACCESS, document)
        return AccessPolicyResponse(**self._save(PolicyKeys.ACCESS, config, updated_by, expected_version))

    def update_access_config(
        self,
        changes: dict[str, Any],
        updated_by: str | None = None,
        expected_version: int | None = None,
    ) -> AccessPolicyResponse:
        """Apply a partial change to the access document."""
        base = self._load(PolicyKeys.ACCESS, fresh=True)
        current = base["config"].model_dump(mode="json")
        return self.save_access_config(
            {**current, **changes}, updated_by=updated_by, expected_version=_merge_base_version(base, expected_version)
        )

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _validate(self, key: str, document: Any) -> BaseModel:
        if not isinstance(document, dict):
            raise ConfigurationError("document", "policy document must be a JSON object")
        try:
            return self._MODELS[key].model_validate(document)
        except PydanticValidationError as e:
            raise _configuration_error(e) from e

    def _load(self, key: str, fresh: bool = False) -> dict[str, Any]:
        if _CACHE_TTL_SECONDS > 0 and not fresh:
            cached = _policy_cache.get(key)
            if cached is not None:
                return cached

        try:
            row = self.db.query(SystemSetting).filter(SystemSetting.key == key).populate_existing().first()
        except STORE_UNAVAILABLE_ERRORS as e:
            raise StoreUnavailableError(f"Could not read policy '{key}': {e}") from e

        if row is None:
            loaded = {
                "key": key,
                "version": 0,
                "updated_at": None,
                "updated_by": None,
                "config": self._MODELS[key](),
            }
        else:
            # A stored document that no longer validates is a configuration
            # problem, not a reason to fall back to defaults.
            loaded = {
                "key": key,
                "version": row.version,
                "updated_at": as_utc(row.updated_at),
                "updated_by": row.updated_by,
                "config": self._validate(key, row.value),
            }

        if _CACHE_TTL_SECONDS > 0:
            _policy_cache[key] = loaded
        return loaded

    def _save(
        self,
        key: str,
        config: BaseModel,
        updated_by: str | None,
        expected_version: int | None,
    ) -> dict[str, Any]:
        value = config.model_dump(mode="json")
        now = utcnow()

        try:
            row = self.db.query(SystemSetting).filter(SystemSetting.key == key).populate_existing().first()
            current_version = row.version if row else 0

            if expected_version is not None and expected_version != current_version:
                raise ValidationError(
                    f"Policy '{key}' changed since it was read (expected version {expected_version}, "
                    f"found {current_version})",
                    field="expected_version",
                )

            if row is None:
                row = SystemSetting(
                    key=key,
                    value=value,
                    category=PolicyKeys.CATEGORY,
                    version=1,
                    updated_at=now,
                    updated_by=updated_by,
                )
                self.db.add(row)
            else:
                # Compare-and-swap on version so two concurrent saves cannot
                # both win against the same base version.
                updated = (
                    self.db.query(SystemSetting)
                    .filter(SystemSetting.key == key, SystemSetting.version == current_version)
                    .update(
                        {
                            "value": value,
                            "version": current_version + 1,
                            "updated_at": now,
                            "updated_by": updated_by,
                        },
                        synchronize_session=False,
                    )
                )
                if updated == 0:
                    self.db.rollback()
                    raise ValidationError(
                        f"Policy '{key}' was modified concurrently; reload and retry",
                        field="expected_version",
                    )
            self.db.commit()
        except STORE_UNAVAILABLE_ERRORS as e:
            self.db.rollback()
            raise StoreUnavailableError(f"Could not save policy '{key}': {e}") from e
        finally:
            invalidate_policy_cache()

        new_version = current_version + 1
        logger.info(
            f"Saved policy {key} (version {new_version})",
            extra={"event": "policy_saved", "policy_key": key, "policy_version": new_version},
        )
        return {
            "key": key,
            "version": new_version,
            "updated_at": now,
            "updated_by": updated_by,
            "config": config,
        }
