import json
import logging
from pathlib import Path
from typing import Any, ClassVar, FrozenSet, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from ledger_harness.schemas.ledger import AccountCredentials

_logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=True, extra="ignore"
    )

    # Network
    # "simulated" answers queries from the in-process ledger; a public network
    # name (or an explicit MIRROR_NODE_URL) routes them to a mirror node.
    NETWORK: str = "simulated"
    MIRROR_NODE_URL: Optional[str] = None
    MIRROR_POLL_INTERVAL_SECONDS: float = 1.0
    HTTP_TIMEOUT_SECONDS: float = 30.0

    # Account provisioning source.
    # ACCOUNTS is the "default" partition; ACCOUNT_PARTITIONS adds named ones.
    # Both accept JSON from the environment: [{"id": "0.0.1001", "private_key": "..."}]
    ACCOUNTS: list[AccountCredentials] = []
    ACCOUNT_PARTITIONS: dict[str, list[AccountCredentials]] = {}
    # Optional JSON file with {"<partition>": [credentials...]}; merged on top of the above.
    ACCOUNTS_FILE: Optional[Path] = None

    # Pool wiring. Roles first..fourth are positions 0..3 of a partition.
    TREASURY_ACCOUNT_INDEX: int = 4
    FUNDED_PARTITION: str = "default"
    EXACT_BALANCE_PARTITION: str = "default"

    # Step budgets
    STEP_TIMEOUT_SECONDS: float = 60.0
    SUBSCRIPTION_TIMEOUT_SECONDS: float = 30.0

    # Simulated ledger
    NETWORK_FEE_TINYBARS: int = 100_000

    # Application
    LOG_LEVEL: str = "INFO"

    # Environment
    # Used for guardrails. Suggested values: dev|test|ci.
    ENV: str = "dev"

    # --- Guardrails ---
    _SAFE_ENVS: ClassVar[FrozenSet[str]] = frozenset({"dev", "development", "test", "testing"})
    _PUBLIC_NETWORKS: ClassVar[FrozenSet[str]] = frozenset({"mainnet", "testnet", "previewnet"})

    def model_post_init(self, __context: Any) -> None:
        self._guardrail_timeouts()
        self._guardrail_network()
        self._guardrail_account_pool()

    def _guardrail_timeouts(self) -> None:
        problems: list[str] = []
        if self.STEP_TIMEOUT_SECONDS <= 0:
            problems.append("STEP_TIMEOUT_SECONDS")
        if self.SUBSCRIPTION_TIMEOUT_SECONDS <= 0:
            problems.append("SUBSCRIPTION_TIMEOUT_SECONDS")
        if self.MIRROR_POLL_INTERVAL_SECONDS <= 0:
            problems.append("MIRROR_POLL_INTERVAL_SECONDS")
        if problems:
            raise RuntimeError(
                f"Timeouts must be positive: {', '.join(problems)}. "
                "An unbounded step or subscription would hang the scenario run."
            )

    def _guardrail_network(self) -> None:
        if self.NETWORK != "simulated" and self.NETWORK not in self._PUBLIC_NETWORKS:
            raise RuntimeError(
                f"Unknown NETWORK={self.NETWORK!r}. "
                f"Use simulated or one of {sorted(self._PUBLIC_NETWORKS)}."
            )

    def _guardrail_account_pool(self) -> None:
        """Fail fast when a live run is configured without any accounts."""
        env = (self.ENV or "").strip().lower()
        if env in self._SAFE_ENVS:
            return
        if self.ACCOUNTS or self.ACCOUNT_PARTITIONS or self.ACCOUNTS_FILE is not None:
            return
        raise RuntimeError(
            "Refusing to run scenarios against a live network without an account pool. "
            f"Got ENV={self.ENV!r}. "
            "Set ACCOUNTS (JSON list of {id, private_key}) or ACCOUNTS_FILE, "
            "or run with ENV=dev/test."
        )

    def mirror_node_url(self) -> Optional[str]:
        """Mirror node base URL, or None when queries stay on the simulated ledger."""
        if self.MIRROR_NODE_URL:
            return self.MIRROR_NODE_URL
        if self.NETWORK in self._PUBLIC_NETWORKS:
            return f"https://{self.NETWORK}.mirrornode.hedera.com"
        return None

    def account_partitions(self) -> dict[str, list[AccountCredentials]]:
        """All configured partitions, file entries taking precedence."""
        partitions: dict[str, list[AccountCredentials]] = {}
        if self.ACCOUNTS:
            partitions["default"] = list(self.ACCOUNTS)
        for name, creds in self.ACCOUNT_PARTITIONS.items():
            partitions[name] = list(creds)

        if self.ACCOUNTS_FILE is not None:
            raw = json.loads(Path(self.ACCOUNTS_FILE).read_text(encoding="utf-8"))
            if isinstance(raw, list):
                raw = {"default": raw}
            for name, items in raw.items():
                partitions[name] = [AccountCredentials.model_validate(item) for item in items]
            _logger.debug(
                "config.accounts_file_loaded path=%s partitions=%s",
                self.ACCOUNTS_FILE,
                sorted(raw.keys()),
            )
        return partitions


settings = Settings()


def get_settings() -> Settings:
    """Return the global settings instance.

    Provided as a callable for pytest fixtures and test mocking convenience.
    """
    return settings
