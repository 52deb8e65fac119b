"""
Service container
Builds the collaborators and services once per process and hands
them to the API and scheduler by reference.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from app.domain.services.config_engine import ConfigEngine, ScheduleConfig
from app.domain.services.nav_calculator import NAVCalculator, ValidationThresholds
from app.infrastructure.registry.fx import HttpFXProvider
from app.infrastructure.registry.http_registry import HttpFundRegistry
from app.infrastructure.registry.pricing import (
    ChainedPricingProvider,
    HttpPricingProvider,
    NamedPricingProvider,
)
from app.infrastructure.registry.types import FundRegistry, FXProvider, PricingProvider
from app.scheduler.nav_scheduler import NAVScheduler
from app.services.approval_service import ApprovalService
from app.services.nav_service import NAVService
from app.services.notification_service import NAVNotifier

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    registry: FundRegistry
    fx_provider: FXProvider
    pricing_provider: Optional[PricingProvider]
    calculator: NAVCalculator
    notifier: NAVNotifier
    nav_service: NAVService
    approval_service: ApprovalService
    scheduler: NAVScheduler
    schedule: ScheduleConfig
    config_engine: Optional[ConfigEngine] = None


def _dec(value: float) -> Decimal:
    return Decimal(str(value))


def build_pricing_provider(settings) -> Optional[PricingProvider]:
    """PRICING_PROVIDER_URL may list several comma-separated sources, tried in order"""
    urls = [u.strip() for u in (settings.PRICING_PROVIDER_URL or "").split(",") if u.strip()]
    if not urls:
        return None
    return ChainedPricingProvider([
        NamedPricingProvider(
            name=f"pricing-{i + 1}",
            provider=HttpPricingProvider(url, timeout=settings.HTTP_TIMEOUT_SECONDS),
        )
        for i, url in enumerate(urls)
    ])


def build_container(
    settings,
    session_factory,
    registry: Optional[FundRegistry] = None,
    fx_provider: Optional[FXProvider] = None,
    pricing_provider: Optional[PricingProvider] = None,
    notifier: Optional[NAVNotifier] = None,
    config_engine: Optional[ConfigEngine] = None,
) -> ServiceContainer:
    registry = registry or HttpFundRegistry(
        settings.FUND_REGISTRY_URL,
        api_key=settings.FUND_REGISTRY_API_KEY,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
    )
    fx_provider = fx_provider or HttpFXProvider(settings.FX_PROVIDER_URL, timeout=settings.HTTP_TIMEOUT_SECONDS)
    if pricing_provider is None:
        pricing_provider = build_pricing_provider(settings)

    notifier = notifier or NAVNotifier(
        recipients=settings.NAV_REPORT_RECIPIENTS,
        telegram_token=settings.TELEGRAM_BOT_TOKEN,
        telegram_chat_id=settings.TELEGRAM_CHAT_ID,
        smtp_host=settings.SMTP_HOST,
        smtp_port=settings.SMTP_PORT,
        smtp_user=settings.SMTP_USER,
        smtp_password=settings.SMTP_PASSWORD,
        sender=settings.NAV_SENDER_EMAIL,
    )

    calculator = NAVCalculator(
        ValidationThresholds(
            warning_change_pct=_dec(settings.NAV_WARNING_CHANGE_PCT),
            error_change_pct=_dec(settings.NAV_ERROR_CHANGE_PCT),
            stale_price_days=settings.STALE_PRICE_DAYS,
        )
    )

    nav_service = NAVService(
        session_factory=session_factory,
        registry=registry,
        fx_provider=fx_provider,
        pricing_provider=pricing_provider,
        calculator=calculator,
        default_management_fee_rate=_dec(settings.DEFAULT_MANAGEMENT_FEE_RATE),
        default_depositary_fee_rate=_dec(settings.DEFAULT_DEPOSITARY_FEE_RATE),
        default_admin_fee_rate=_dec(settings.DEFAULT_ADMIN_FEE_RATE),
        fallback_shares_outstanding=_dec(settings.FALLBACK_SHARES_OUTSTANDING),
        verify_tolerance_pct=_dec(settings.NAV_VERIFY_TOLERANCE_PCT),
    )

    approval_service = ApprovalService(
        session_factory=session_factory,
        registry=registry,
        notifier=notifier,
        require_distinct_approvers=settings.APPROVAL_REQUIRE_DISTINCT_APPROVERS,
        auto_publish=settings.AUTO_PUBLISH_ON_APPROVAL,
    )

    schedule = config_engine.schedule if config_engine else ScheduleConfig.from_settings(settings)
    scheduler = NAVScheduler(
        nav_service=nav_service,
        approval_service=approval_service,
        calendar=schedule.calendar(),
        notifier=notifier,
        retry_on_failure=schedule.retry_on_failure,
        max_retries=schedule.max_retries,
        retry_delay_minutes=schedule.retry_delay_minutes,
        auto_approve=schedule.auto_approve,
        auto_approve_threshold=schedule.auto_approve_threshold,
    )

    logger.info(
        "SERVICES_BUILT | registry=%s | pricing=%s | cutoff=%s",
        type(registry).__name__,
        type(pricing_provider).__name__ if pricing_provider else None,
        schedule.cutoff_time.strftime("%H:%M"),
    )
    return ServiceContainer(
        registry=registry,
        fx_provider=fx_provider,
        pricing_provider=pricing_provider,
        calculator=calculator,
        notifier=notifier,
        nav_service=nav_service,
        approval_service=approval_service,
        scheduler=scheduler,
        schedule=schedule,
        config_engine=config_engine,
    )
