"""Protocol constants and helpers shared by the decoder and the reconciler.

The posting contract went through several wire-format breaking changes.
`ProtocolConfig` captures everything that depends on them as an immutable
value so decoding and reconciliation stay pure functions of their inputs.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from chain_feed.core.settings import Settings, settings


class ScanDirection(Enum):
    """Direction a batch was discovered in."""

    FORWARD = "forward"  # newest blocks, discovered newest-first
    BACKWARD = "backward"  # historical backfill, discovered oldest-last


@dataclass(frozen=True)
class ProtocolConfig:
    """Immutable view of the contract protocol configuration."""

    contract_address_current: str
    contract_address_legacy: str
    make_post_method: str
    main_channel_id: str
    discuss_prefix: str
    legacy_post_id_prefix: str
    v3_timestamp: int
    v5_timestamp: int
    first_block: int

    @property
    def discussion_channel_pattern(self) -> re.Pattern[str]:
        return re.compile(rf"^{re.escape(self.discuss_prefix)}(\d+)$", re.IGNORECASE)

    def is_pre_v3(self, timestamp: int) -> bool:
        return timestamp < self.v3_timestamp

    def is_pre_v5(self, timestamp: int) -> bool:
        return timestamp < self.v5_timestamp

    def decorate_post_id(self, raw_id: str, timestamp: int) -> str:
        """Apply the legacy prefix to ids minted before the contract migration."""
        if raw_id and self.is_pre_v5(timestamp):
            return self.legacy_post_id_prefix + raw_id
        return raw_id

    def discussion_channel_id(self, post_id: str) -> str:
        return self.discuss_prefix + post_id

    def is_discussion_channel(self, channel_id: str) -> bool:
        return channel_id.startswith(self.discuss_prefix)

    def discussed_post_id(self, channel_id: str) -> str:
        return channel_id[len(self.discuss_prefix):]


def load_protocol_config(source: Settings | None = None) -> ProtocolConfig:
    """Build the protocol configuration from application settings."""

    cfg = source or settings
    return ProtocolConfig(
        contract_address_current=cfg.contract_address_current,
        contract_address_legacy=cfg.contract_address_legacy,
        make_post_method=cfg.make_post_method,
        main_channel_id=cfg.main_channel_id,
        discuss_prefix=cfg.discuss_prefix,
        legacy_post_id_prefix=cfg.legacy_post_id_prefix,
        v3_timestamp=cfg.breaking_change_v3_timestamp,
        v5_timestamp=cfg.breaking_change_v5_timestamp,
        first_block=cfg.first_block,
    )
