"""Configuration loading: TOML file + environment variables."""

from __future__ import annotations

import os
from pathlib import Path

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:
    import tomli as tomllib  # type: ignore[no-redef]

from attendmint.models.config import EngineConfig, MintMode


def load_config(
    config_path: str | Path | None = None,
    env_prefix: str = "ATTENDMINT_",
) -> EngineConfig:
    """Load engine configuration from a TOML file and env vars.

    Priority (highest wins):
        1. Environment variables (ATTENDMINT_DB_PATH, etc.)
        2. TOML config file
        3. Defaults from EngineConfig
    """
    raw: dict = {}
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.exists():
            with open(p, "rb") as f:
                raw = tomllib.load(f)

    cfg = EngineConfig()

    # ── Engine section ─────────────────────────────────────
    engine = raw.get("engine", {})
    if mode_str := engine.get("mint_mode"):
        cfg.mint_mode = MintMode(mode_str)
    if v := engine.get("log_level"):
        cfg.log_level = str(v)
    if v := engine.get("timezone"):
        cfg.timezone = str(v)

    # ── Storage section ────────────────────────────────────
    storage = raw.get("storage", {})
    if v := storage.get("db_path"):
        cfg.db_path = str(v)

    # ── IPFS section ───────────────────────────────────────
    ipfs = raw.get("ipfs", {})
    if v := ipfs.get("api_url"):
        cfg.ipfs_api_url = str(v)
    if v := ipfs.get("gateway_url"):
        cfg.ipfs_gateway_url = str(v)
    if v := ipfs.get("upload_timeout"):
        cfg.upload_timeout = float(v)

    # ── Mint section ───────────────────────────────────────
    mint = raw.get("mint", {})
    if v := mint.get("endpoint"):
        cfg.mint_endpoint = str(v)
    if v := mint.get("api_key"):
        cfg.mint_api_key = str(v)
    if v := mint.get("timeout"):
        cfg.mint_timeout = float(v)
    if v := mint.get("claim_lease"):
        cfg.claim_lease = int(v)
    if v := mint.get("max_concurrent"):
        cfg.max_concurrent_mints = int(v)
    if v := mint.get("worker_interval"):
        cfg.mint_worker_interval = int(v)

    # ── Metadata section ───────────────────────────────────
    metadata = raw.get("metadata", {})
    if v := metadata.get("external_url_base"):
        cfg.external_url_base = str(v)
    if v := metadata.get("default_image_url"):
        cfg.default_image_url = str(v)
    if v := metadata.get("default_check_in_location"):
        cfg.default_check_in_location = str(v)
    if v := metadata.get("early_bird_minutes"):
        cfg.early_bird_minutes = int(v)

    # ── Purchase section ───────────────────────────────────
    purchase = raw.get("purchase", {})
    if "compensate_failed" in purchase:
        cfg.compensate_failed_purchases = bool(purchase["compensate_failed"])
    if "loyalty_points_per_check_in" in purchase:
        cfg.loyalty_points_per_check_in = int(purchase["loyalty_points_per_check_in"])

    # ── Environment variable overrides (highest priority) ──
    if db := os.environ.get(f"{env_prefix}DB_PATH"):
        cfg.db_path = db
    if mode_env := os.environ.get(f"{env_prefix}MINT_MODE"):
        cfg.mint_mode = MintMode(mode_env)
    if api := os.environ.get(f"{env_prefix}IPFS_API_URL"):
        cfg.ipfs_api_url = api
    if endpoint := os.environ.get(f"{env_prefix}MINT_ENDPOINT"):
        cfg.mint_endpoint = endpoint
    if key := os.environ.get(f"{env_prefix}MINT_API_KEY"):
        cfg.mint_api_key = key
    if tz := os.environ.get(f"{env_prefix}TIMEZONE"):
        cfg.timezone = tz

    # Expand ~ in paths
    if cfg.db_path != ":memory:":
        cfg.db_path = str(Path(cfg.db_path).expanduser())

    return cfg
