"""Configuration models for the engine."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class MintMode(str, Enum):
    """When attendance NFTs are minted."""

    AUTO = "auto"  # Queue a mint as soon as a check-in lands
    ON_DEMAND = "on_demand"  # Mint only when the attendee asks


@dataclass
class EngineConfig:
    """Complete engine configuration."""

    # Engine
    mint_mode: MintMode = MintMode.ON_DEMAND
    log_level: str = "info"
    timezone: str = "UTC"  # venue timezone for check-in time-of-day traits

    # Storage
    db_path: str = "~/.attendmint/state.db"

    # IPFS
    ipfs_api_url: str = "http://127.0.0.1:5001"
    ipfs_gateway_url: str = "https://ipfs.io"
    upload_timeout: float = 30.0  # seconds

    # Mint
    mint_endpoint: str = ""  # empty -> simulated minter
    mint_api_key: str = ""
    mint_timeout: float = 60.0  # seconds
    claim_lease: int = 300  # seconds a pending claim blocks other workers
    max_concurrent_mints: int = 3
    mint_worker_interval: int = 30  # seconds between pending sweeps in auto mode

    # Metadata
    external_url_base: str = ""  # e.g. https://tickets.example.com
    default_image_url: str = "https://via.placeholder.com/400x400?text=Event+NFT"
    default_check_in_location: str = "Main Entrance"
    early_bird_minutes: int = 120

    # Purchase
    compensate_failed_purchases: bool = True
    loyalty_points_per_check_in: int = 10
