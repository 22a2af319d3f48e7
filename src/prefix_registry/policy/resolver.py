"""Policy resolver — typed access to the registry's protocol parameters.

Parameters are read from ``registry_params.json`` in a config directory.
The resolver validates the file once at load time and fails closed: a
missing section or out-of-range value raises ValueError rather than
silently falling back to a default.
"""

from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path
from typing import Any


PARAMS_FILENAME = "registry_params.json"

U64_MAX = 2**64 - 1


class PolicyResolver:
    """Resolves protocol parameters from loaded configuration.

    Usage:
        resolver = PolicyResolver.from_config_dir(Path("config"))
        resolver.max_authority_keys()   # 10
        resolver.pending_review_window()  # timedelta(days=14)
    """

    def __init__(self, params: dict[str, Any]) -> None:
        self._params = params
        self._validate()

    @staticmethod
    def from_config_dir(config_dir: Path) -> PolicyResolver:
        """Load parameters from a config directory."""
        path = Path(config_dir) / PARAMS_FILENAME
        with path.open("r", encoding="utf-8") as handle:
            params = json.load(handle)
        return PolicyResolver(params)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def program_id(self) -> str:
        return self._params["addressing"]["program_id"]

    def prefix_length_bounds(self) -> tuple[int, int]:
        p = self._params["prefix"]
        return p["min_length"], p["max_length"]

    def max_uri_length(self) -> int:
        return self._params["metadata"]["max_uri_length"]

    def allowed_uri_schemes(self) -> tuple[str, ...]:
        return tuple(self._params["metadata"]["allowed_schemes"])

    def metadata_hash_length(self) -> int:
        return self._params["metadata"]["hash_length"]

    def max_authority_keys(self) -> int:
        return self._params["limits"]["max_authority_keys"]

    def max_verifiers(self) -> int:
        return self._params["limits"]["max_verifiers"]

    def max_fee(self) -> int:
        return self._params["fees"]["max_fee"]

    def treasury_reserve_minimum(self) -> int:
        return self._params["fees"]["treasury_reserve_minimum"]

    def pending_review_window(self) -> timedelta:
        return timedelta(days=self._params["expiry"]["pending_review_days"])

    def enforce_expiry_on_approve(self) -> bool:
        return bool(self._params["expiry"]["enforce_on_approve"])

    def allow_expired_pending_refund(self) -> bool:
        return bool(self._params["expiry"]["allow_expired_pending_refund"])

    def as_dict(self) -> dict[str, Any]:
        """Return a deep copy of the raw parameters."""
        return json.loads(json.dumps(self._params))

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate(self) -> None:
        required = ("addressing", "prefix", "metadata", "limits", "fees", "expiry")
        missing = [s for s in required if s not in self._params]
        if missing:
            raise ValueError(f"Registry params missing sections: {', '.join(missing)}")

        try:
            min_len, max_len = self.prefix_length_bounds()
            if not (1 <= min_len <= max_len):
                raise ValueError(
                    f"Prefix length bounds invalid: min={min_len}, max={max_len}"
                )
            if not self.program_id():
                raise ValueError("addressing.program_id must be non-empty")
            if self.max_uri_length() <= 0:
                raise ValueError("metadata.max_uri_length must be positive")
            if not self.allowed_uri_schemes():
                raise ValueError("metadata.allowed_schemes must not be empty")
            if self.metadata_hash_length() <= 0:
                raise ValueError("metadata.hash_length must be positive")
            if self.max_authority_keys() < 0:
                raise ValueError("limits.max_authority_keys must be >= 0")
            if self.max_verifiers() <= 0:
                raise ValueError("limits.max_verifiers must be positive")
            if not (0 < self.max_fee() <= U64_MAX):
                raise ValueError(f"fees.max_fee must be in (0, {U64_MAX}]")
            if self.treasury_reserve_minimum() < 0:
                raise ValueError("fees.treasury_reserve_minimum must be >= 0")
            if self._params["expiry"]["pending_review_days"] <= 0:
                raise ValueError("expiry.pending_review_days must be positive")
            self.enforce_expiry_on_approve()
            self.allow_expired_pending_refund()
        except KeyError as e:
            raise ValueError(f"Registry params missing key: {e}") from e
