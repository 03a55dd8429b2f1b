"""
SwapGraph configuration.

Plain dataclasses with defaults. Load from YAML with SwapGraphConfig.from_yaml()
or from the SWAPGRAPH_CONFIG environment variable with from_env().

    matching:
      max_cycle_length: 3
      max_enumerated_cycles: 10000
      timeout_ms: 2000
    settlement:
      deposit_window_seconds: 86400
    journal:
      path: .swapgraph/journal.jsonl
"""

import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from swapgraph.core.exceptions import ValidationError


@dataclass
class MatchingConfig:
    max_cycle_length:       int   = 3
    max_enumerated_cycles:  int   = 10_000
    timeout_ms:             int   = 2_000
    proposal_ttl_seconds:   int   = 3_600
    fee_rate:               float = 0.01
    exact_selection_limit:  int   = 20
    max_search_nodes:       int   = 200_000
    local_search_max_passes: int  = 25
    selection_mode:         str   = "optimizer"   # "optimizer" | "greedy"
    shadow_enabled:         bool  = True

    def validate(self) -> None:
        if self.max_cycle_length < 2:
            raise ValidationError(
                "max_cycle_length must be >= 2",
                {"max_cycle_length": self.max_cycle_length},
                reason_code="invalid_config",
            )
        if self.max_enumerated_cycles < 1:
            raise ValidationError(
                "max_enumerated_cycles must be >= 1",
                {"max_enumerated_cycles": self.max_enumerated_cycles},
                reason_code="invalid_config",
            )
        if self.timeout_ms < 0:
            raise ValidationError(
                "timeout_ms must be >= 0",
                {"timeout_ms": self.timeout_ms},
                reason_code="invalid_config",
            )
        if self.selection_mode not in ("optimizer", "greedy"):
            raise ValidationError(
                "selection_mode must be 'optimizer' or 'greedy'",
                {"selection_mode": self.selection_mode},
                reason_code="invalid_config",
            )


@dataclass
class SettlementConfig:
    deposit_window_seconds: int           = 86_400
    receipt_key_id:         Optional[str] = None

    def validate(self) -> None:
        if self.deposit_window_seconds <= 0:
            raise ValidationError(
                "deposit_window_seconds must be > 0",
                {"deposit_window_seconds": self.deposit_window_seconds},
                reason_code="invalid_config",
            )


@dataclass
class JournalConfig:
    path: Optional[str] = None   # None keeps the journal in memory


@dataclass
class SwapGraphConfig:
    matching:   MatchingConfig   = field(default_factory=MatchingConfig)
    settlement: SettlementConfig = field(default_factory=SettlementConfig)
    journal:    JournalConfig    = field(default_factory=JournalConfig)
    log_level:  str              = "INFO"

    # ── Loading ───────────────────────────────────────────────

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SwapGraphConfig":
        data = dict(data or {})
        unknown = set(data) - {f.name for f in fields(cls)}
        if unknown:
            raise ValidationError(
                "Unknown configuration sections",
                {"sections": sorted(unknown)},
                reason_code="invalid_config",
            )
        config = cls(
            matching=   _section(MatchingConfig, data.get("matching")),
            settlement= _section(SettlementConfig, data.get("settlement")),
            journal=    _section(JournalConfig, data.get("journal")),
            log_level=  str(data.get("log_level", "INFO")).upper(),
        )
        config.validate()
        return config

    @classmethod
    def from_yaml(cls, path: Path) -> "SwapGraphConfig":
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
        if raw is not None and not isinstance(raw, dict):
            raise ValidationError(
                "Configuration file must contain a mapping",
                {"path": str(path)},
                reason_code="invalid_config",
            )
        return cls.from_dict(raw)

    @classmethod
    def from_env(cls) -> "SwapGraphConfig":
        """Read SWAPGRAPH_CONFIG. Defaults when unset."""
        path = os.environ.get("SWAPGRAPH_CONFIG")
        return cls.from_yaml(Path(path)) if path else cls()

    def validate(self) -> None:
        self.matching.validate()
        self.settlement.validate()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _section(section_cls, raw: Optional[Dict[str, Any]]):
    if raw is None:
        return section_cls()
    if not isinstance(raw, dict):
        raise ValidationError(
            f"Configuration section for {section_cls.__name__} must be a mapping",
            reason_code="invalid_config",
        )
    allowed = {f.name for f in fields(section_cls)}
    unknown = set(raw) - allowed
    if unknown:
        raise ValidationError(
            f"Unknown keys in {section_cls.__name__}",
            {"keys": sorted(unknown)},
            reason_code="invalid_config",
        )
    return section_cls(**raw)
