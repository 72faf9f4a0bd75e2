"""Configuration flags for the estimator service."""

from __future__ import annotations

import os
from typing import Final


def _get_bool(env_var: str, default: bool) -> bool:
	value = os.getenv(env_var)
	if value is None:
		return default
	return value.strip().lower() in {"1", "true", "yes", "on"}


SERVICE_NAME: Final[str] = os.getenv("SERVICE_NAME", "cob-estimator")
SERVICE_VERSION: Final[str] = os.getenv("SERVICE_VERSION", "0.1.0")

LOG_LEVEL: Final[str] = os.getenv("ESTIMATOR_LOG_LEVEL", "INFO").strip().upper() or "INFO"

# Auto / workers' comp payers with active subrogation block downstream group health plans.
TPL_BLOCKS_GROUP_HEALTH: Final[bool] = _get_bool("TPL_BLOCKS_GROUP_HEALTH", True)
