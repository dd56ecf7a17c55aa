"""Persistence of VPN configs, one record per provider profile."""

import json
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from ..common.config import config_dir
from ..common.exceptions import VpnConfigError
from ..common.logging import get_logger
from ..common.utils import atomic_write
from .models import VpnConfig

logger = get_logger(__name__)


class VpnConfigStore:
    """JSON file of VpnConfig records keyed by profile, readable only by the owner."""

    def __init__(self, path: Path | None = None):
        self.path = path or config_dir() / "vpn.json"

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
        except (OSError, ValueError) as e:
            raise VpnConfigError(f"Cannot read VPN config {self.path}: {e}") from e
        if not isinstance(data, dict) or not isinstance(data.get("profiles", {}), dict):
            raise VpnConfigError(f"Unexpected layout in VPN config {self.path}")
        return data

    def profiles(self) -> list[str]:
        return sorted(self._read().get("profiles", {}))

    def load(self, profile: str) -> VpnConfig:
        """Load the record for profile.

        Raises:
            VpnConfigError: If there is no record or it is invalid
        """
        record = self._read().get("profiles", {}).get(profile)
        if record is None:
            raise VpnConfigError(
                f"No VPN config for profile '{profile}'. Run VPN setup first."
            )
        try:
            return VpnConfig.model_validate(record)
        except ValidationError as e:
            raise VpnConfigError(f"Invalid VPN config for profile '{profile}': {e}") from e

    def save(self, profile: str, config: VpnConfig) -> None:
        """Write the record for profile with mode 0600."""
        data = self._read()
        record = config.model_dump(mode="json")
        record["password"] = config.password.get_secret_value()
        data.setdefault("profiles", {})[profile] = record
        try:
            atomic_write(self.path, json.dumps(data, indent=2) + "\n", mode=0o600)
        except OSError as e:
            raise VpnConfigError(f"Cannot write VPN config {self.path}: {e}") from e
        logger.info("Saved VPN config", profile=profile, path=str(self.path))

    def delete(self, profile: str) -> bool:
        data = self._read()
        if data.get("profiles", {}).pop(profile, None) is None:
            return False
        atomic_write(self.path, json.dumps(data, indent=2) + "\n", mode=0o600)
        logger.info("Deleted VPN config", profile=profile)
        return True
