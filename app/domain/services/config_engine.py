"""
CONFIG ENGINE
Load, validate, and expose fund and schedule configuration

RESPONSIBILITIES:
- Load YAML configuration files (funds.yml, schedule.yml)
- Validate configuration integrity
- Expose read-only typed objects

RULES:
❌ No silent fixes of invalid values
✅ Fail fast on invalid config
✅ Deterministic output
"""

from dataclasses import dataclass, field, replace
from datetime import date, time
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from app.domain.models import FundConfig, PerformanceFeeType
from app.infrastructure.calendar.trading_calendar import TradingCalendar, parse_cutoff

_FEE_FIELDS = ("management_fee_rate", "depositary_fee_rate", "admin_fee_rate", "performance_fee_rate")


@dataclass(frozen=True)
class ScheduleConfig:
    cutoff_time: time = time(15, 0)
    timezone: str = "Europe/Stockholm"
    run_on_weekdays: bool = True
    run_on_weekends: bool = False
    holidays: List[date] = field(default_factory=list)
    retry_on_failure: bool = True
    max_retries: int = 3
    retry_delay_minutes: int = 15
    auto_approve: bool = False
    auto_approve_threshold: Decimal = Decimal("1.0")

    @staticmethod
    def from_settings(settings) -> "ScheduleConfig":
        return ScheduleConfig(
            cutoff_time=parse_cutoff(settings.NAV_CUTOFF_TIME),
            timezone=settings.TIMEZONE,
            run_on_weekdays=settings.NAV_RUN_ON_WEEKDAYS,
            run_on_weekends=settings.NAV_RUN_ON_WEEKENDS,
            holidays=[date.fromisoformat(d) for d in settings.NAV_HOLIDAYS],
            retry_on_failure=settings.NAV_RETRY_ON_FAILURE,
            max_retries=settings.NAV_MAX_RETRIES,
            retry_delay_minutes=settings.NAV_RETRY_DELAY_MINUTES,
            auto_approve=settings.NAV_AUTO_APPROVE,
            auto_approve_threshold=Decimal(str(settings.NAV_AUTO_APPROVE_THRESHOLD)),
        )

    def calendar(self) -> TradingCalendar:
        return TradingCalendar(
            cutoff_time=self.cutoff_time,
            timezone=self.timezone,
            run_on_weekdays=self.run_on_weekdays,
            run_on_weekends=self.run_on_weekends,
            holidays=self.holidays,
        )


class ConfigEngine:
    """
    Configuration Engine
    funds.yml is required; schedule.yml overrides the settings-derived schedule when present.
    """

    def __init__(self, config_dir: Path, schedule_defaults: Optional[ScheduleConfig] = None):
        self.config_dir = Path(config_dir)
        self._funds: List[FundConfig] = []
        self._schedule: ScheduleConfig = schedule_defaults or ScheduleConfig()

    def load_all(self) -> None:
        self._load_funds()
        self._load_schedule()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _read_yaml(self, name: str) -> Dict[str, Any]:
        path = self.config_dir / name
        with open(path, "r") as f:
            data = yaml.safe_load(f)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError(f"{path}: top level must be a mapping")
        return data

    def _load_funds(self) -> None:
        funds_file = self.config_dir / "funds.yml"
        if not funds_file.exists():
            raise FileNotFoundError(f"Fund config not found: {funds_file}")

        data = self._read_yaml("funds.yml")
        funds = []
        for raw in data.get("funds", []):
            try:
                config = FundConfig.from_dict(raw)
            except (KeyError, TypeError, ArithmeticError) as exc:
                raise ValueError(f"Invalid fund config entry {raw!r}: {exc}") from exc
            validate_fund_config(config)
            funds.append(config)

        ids = [f.fund_id for f in funds]
        if len(ids) != len(set(ids)):
            raise ValueError("Duplicate fund ids found in configuration")
        self._funds = funds

    def _load_schedule(self) -> None:
        if not (self.config_dir / "schedule.yml").exists():
            return

        data = self._read_yaml("schedule.yml").get("schedule") or {}
        overrides: Dict[str, Any] = {}
        if "cutoff_time" in data:
            overrides["cutoff_time"] = parse_cutoff(str(data["cutoff_time"]))
        if "timezone" in data:
            overrides["timezone"] = str(data["timezone"])
        for flag in ("run_on_weekdays", "run_on_weekends", "retry_on_failure", "auto_approve"):
            if flag in data:
                overrides[flag] = bool(data[flag])
        for count in ("max_retries", "retry_delay_minutes"):
            if count in data:
                value = int(data[count])
                if value < 0:
                    raise ValueError(f"schedule.{count} must be >= 0")
                overrides[count] = value
        if "auto_approve_threshold" in data:
            overrides["auto_approve_threshold"] = Decimal(str(data["auto_approve_threshold"]))
        if "holidays" in data:
            overrides["holidays"] = [
                d if isinstance(d, date) else date.fromisoformat(str(d))
                for d in data["holidays"] or []
            ]

        self._schedule = replace(self._schedule, **overrides)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def funds(self) -> List[FundConfig]:
        return list(self._funds)

    @property
    def schedule(self) -> ScheduleConfig:
        return self._schedule

    def get_fund(self, fund_id: str) -> FundConfig:
        for fund in self._funds:
            if fund.fund_id == fund_id:
                return fund
        raise ValueError(f"Fund not configured: {fund_id}")


def validate_fund_config(config: FundConfig) -> None:
    """Raise ValueError on rates outside [0, 1), bad currencies or duplicate share classes"""
    if len(config.currency) != 3 or not config.currency.isalpha():
        raise ValueError(f"Fund {config.fund_id}: invalid currency {config.currency!r}")

    for name in _FEE_FIELDS:
        rate = getattr(config, name)
        if rate is not None and not (Decimal("0") <= rate < Decimal("1")):
            raise ValueError(f"Fund {config.fund_id}: {name} {rate} outside [0, 1)")

    if config.performance_fee_type is not None and config.performance_fee_rate is None:
        raise ValueError(f"Fund {config.fund_id}: performance_fee_type without performance_fee_rate")
    if config.performance_fee_type == PerformanceFeeType.HURDLE_RATE and config.hurdle_rate < 0:
        raise ValueError(f"Fund {config.fund_id}: negative hurdle_rate")

    if config.accrual_policy.fee_accrual_basis not in ("DAILY", "MONTHLY"):
        raise ValueError(
            f"Fund {config.fund_id}: fee_accrual_basis must be DAILY or MONTHLY"
        )

    sc_ids = [sc.share_class_id for sc in config.share_classes]
    if len(sc_ids) != len(set(sc_ids)):
        raise ValueError(f"Fund {config.fund_id}: duplicate share class ids")
    for sc in config.share_classes:
        for name in ("management_fee_rate", "performance_fee_rate"):
            rate = getattr(sc, name)
            if rate is not None and not (Decimal("0") <= rate < Decimal("1")):
                raise ValueError(
                    f"Fund {config.fund_id}/{sc.share_class_id}: {name} {rate} outside [0, 1)"
                )
