from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from app.domain.exceptions import NAVRecordConflictError
from app.domain.models import (
    ApprovalStamp,
    ApprovalStatus,
    CashBalance,
    FundConfig,
    FundKey,
    FundSnapshot,
    NAVApproval,
    NAVRecordStatus,
    NAVRun,
    NAVRunStatus,
    NAVSummaryLine,
    ShareClassConfig,
    TransitionResult,
)
from app.domain.services.nav_calculator import NAVCalculator
from app.infrastructure.db.repositories.fund_config_repository import FundConfigRepository
from app.infrastructure.db.repositories.nav_approval_repository import NAVApprovalRepository
from app.infrastructure.db.repositories.nav_record_repository import NAVRecordRepository
from app.infrastructure.db.repositories.nav_run_repository import NAVRunRepository

NAV_DATE = date(2026, 10, 16)
KEY = FundKey("NORDIC-EQ", "A")


def make_result(cash: str = "1000", nav_date: date = NAV_DATE):
    return NAVCalculator().calculate(FundSnapshot(
        fund_id=KEY.fund_id,
        share_class_id=KEY.share_class_id,
        valuation_date=nav_date,
        fund_currency="SEK",
        shares_outstanding=Decimal("10"),
        cash_balances=(CashBalance("C1", "SEK", Decimal(cash), nav_date),),
    ), calculated_at=datetime(2026, 10, 16, 15, 0))


def make_approval(approval_id: str = "appr-1") -> NAVApproval:
    now = datetime(2026, 10, 16, 15, 5)
    return NAVApproval(
        approval_id=approval_id,
        run_id="run-1",
        nav_date=NAV_DATE,
        status=ApprovalStatus.PENDING_FIRST,
        covered=(KEY,),
        summary=(NAVSummaryLine.from_result(make_result()),),
        created_at=now,
        updated_at=now,
    )


def stamp(actor: str) -> ApprovalStamp:
    return ApprovalStamp(actor_id=actor, actor_name=actor.title(), at=datetime(2026, 10, 16, 16, 0))


# ============================================================
# NAV records
# ============================================================

@pytest.mark.asyncio
@pytest.mark.integration
async def test_new_record_is_preliminary(db_session):
    repo = NAVRecordRepository(db_session)

    record = await repo.save_result(make_result())

    assert record.status == NAVRecordStatus.PRELIMINARY
    assert record.version == 1
    assert record.nav_per_share == Decimal("100")
    assert record.approved_by == ()
    assert await repo.history(KEY, NAV_DATE) == []


@pytest.mark.asyncio
@pytest.mark.integration
async def test_recompute_keeps_one_row_and_appends_history(db_session):
    repo = NAVRecordRepository(db_session)
    await repo.save_result(make_result("1000"))

    record = await repo.save_result(make_result("1200"), changed_by="ops")

    assert record.status == NAVRecordStatus.PRELIMINARY
    assert record.version == 2
    assert record.nav_per_share == Decimal("120")
    assert len(await repo.list_for_date(NAV_DATE)) == 1

    history = await repo.history(KEY, NAV_DATE)
    assert len(history) == 1
    assert history[0].reason == "RECOMPUTED"
    assert history[0].changed_by == "ops"
    assert history[0].nav_per_share == Decimal("100")
    assert history[0].previous_status == NAVRecordStatus.PRELIMINARY


@pytest.mark.asyncio
@pytest.mark.integration
async def test_concurrent_insert_is_a_conflict(db_session, monkeypatch):
    repo = NAVRecordRepository(db_session)
    await repo.save_result(make_result())

    async def not_found(key, nav_date):
        return None

    # Second writer did not see the first insert
    monkeypatch.setattr(repo, "_load", not_found)

    with pytest.raises(NAVRecordConflictError):
        await repo.save_result(make_result("1100"))


@pytest.mark.asyncio
@pytest.mark.integration
async def test_compare_and_swap_on_status_and_version(db_session):
    repo = NAVRecordRepository(db_session)
    await repo.save_result(make_result())

    stale_version = await repo.update_if_status(
        KEY, NAV_DATE, NAVRecordStatus.PRELIMINARY, NAVRecordStatus.APPROVED, expected_version=7
    )
    wrong_status = await repo.update_if_status(
        KEY, NAV_DATE, NAVRecordStatus.APPROVED, NAVRecordStatus.PUBLISHED
    )
    applied = await repo.update_if_status(
        KEY, NAV_DATE, NAVRecordStatus.PRELIMINARY, NAVRecordStatus.APPROVED, changed_by="bob"
    )

    assert stale_version == TransitionResult.CONFLICT
    assert wrong_status == TransitionResult.CONFLICT
    assert applied == TransitionResult.APPLIED
    record = await repo.get(KEY, NAV_DATE)
    assert record.status == NAVRecordStatus.APPROVED
    assert record.version == 2


@pytest.mark.asyncio
@pytest.mark.integration
async def test_disallowed_transition_raises(db_session):
    repo = NAVRecordRepository(db_session)
    await repo.save_result(make_result())

    with pytest.raises(ValueError):
        await repo.update_if_status(KEY, NAV_DATE, NAVRecordStatus.PRELIMINARY, NAVRecordStatus.PUBLISHED)


@pytest.mark.asyncio
@pytest.mark.integration
async def test_recompute_of_approved_record_is_a_correction(db_session):
    repo = NAVRecordRepository(db_session)
    await repo.save_result(make_result())
    await repo.update_if_status(
        KEY, NAV_DATE, NAVRecordStatus.PRELIMINARY, NAVRecordStatus.APPROVED,
        approval_id="appr-1", approved_by=["alice", "bob"],
    )

    record = await repo.save_result(make_result("1050"))

    assert record.status == NAVRecordStatus.CORRECTED
    assert record.approval_id is None
    assert record.approved_by == ()
    assert record.nav_per_share == Decimal("105")

    history = await repo.history(KEY, NAV_DATE)
    assert [(h.previous_status, h.new_status) for h in history] == [
        (NAVRecordStatus.PRELIMINARY, NAVRecordStatus.APPROVED),
        (NAVRecordStatus.APPROVED, NAVRecordStatus.CORRECTED),
    ]
    assert history[1].snapshot["approval_id"] == "appr-1"
    assert history[1].snapshot["approved_by"] == ["alice", "bob"]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_latest_before_and_fund_listing(db_session):
    repo = NAVRecordRepository(db_session)
    earlier = NAV_DATE - timedelta(days=1)
    await repo.save_result(make_result("900", nav_date=earlier))
    await repo.save_result(make_result("1000"))

    previous = await repo.get_latest_before(KEY, NAV_DATE)
    listed = await repo.list_for_fund(KEY, start=earlier, end=NAV_DATE)

    assert previous.nav_date == earlier
    assert [r.nav_date for r in listed] == [NAV_DATE, earlier]
    assert await repo.get_latest_before(KEY, earlier) is None


@pytest.mark.asyncio
@pytest.mark.integration
async def test_transition_many_reports_each_key(db_session):
    repo = NAVRecordRepository(db_session)
    await repo.save_result(make_result())
    missing = FundKey("NORDIC-EQ", "I")

    outcomes = await repo.transition_many([KEY, missing], NAV_DATE, NAVRecordStatus.APPROVED, changed_by="bob")

    assert outcomes == [(KEY, TransitionResult.APPLIED), (missing, TransitionResult.CONFLICT)]


# ============================================================
# Approvals
# ============================================================

@pytest.mark.asyncio
@pytest.mark.integration
async def test_approval_compare_and_swap(db_session):
    repo = NAVApprovalRepository(db_session)
    await repo.create(make_approval())

    first = await repo.update_if_status(
        "appr-1", ApprovalStatus.PENDING_FIRST, ApprovalStatus.PENDING_SECOND, first_approval=stamp("alice")
    )
    replay = await repo.update_if_status(
        "appr-1", ApprovalStatus.PENDING_FIRST, ApprovalStatus.PENDING_SECOND, first_approval=stamp("carol")
    )

    assert first == TransitionResult.APPLIED
    assert replay == TransitionResult.CONFLICT
    approval = await repo.get("appr-1")
    assert approval.status == ApprovalStatus.PENDING_SECOND
    assert approval.first_approval.actor_id == "alice"
    assert approval.covered == (KEY,)
    assert approval.summary[0].nav_per_share == Decimal("100")


@pytest.mark.asyncio
@pytest.mark.integration
async def test_unknown_stamp_is_rejected(db_session):
    repo = NAVApprovalRepository(db_session)
    await repo.create(make_approval())

    with pytest.raises(ValueError):
        await repo.update_if_status(
            "appr-1", ApprovalStatus.PENDING_FIRST, ApprovalStatus.PENDING_SECOND, third_approval=stamp("x")
        )


@pytest.mark.asyncio
@pytest.mark.integration
async def test_publish_stamp_is_set_once(db_session):
    repo = NAVApprovalRepository(db_session)
    await repo.create(make_approval())

    assert await repo.set_published("appr-1", stamp("alice")) == TransitionResult.CONFLICT

    await repo.update_if_status("appr-1", ApprovalStatus.PENDING_FIRST, ApprovalStatus.PENDING_SECOND)
    await repo.update_if_status("appr-1", ApprovalStatus.PENDING_SECOND, ApprovalStatus.APPROVED)

    assert await repo.set_published("appr-1", stamp("alice")) == TransitionResult.APPLIED
    assert await repo.set_published("appr-1", stamp("bob")) == TransitionResult.CONFLICT
    assert (await repo.get("appr-1")).published.actor_id == "alice"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_pending_listing(db_session):
    repo = NAVApprovalRepository(db_session)
    await repo.create(make_approval("appr-1"))
    await repo.create(make_approval("appr-2"))
    await repo.update_if_status("appr-2", ApprovalStatus.PENDING_FIRST, ApprovalStatus.REJECTED)

    pending = await repo.list_pending()

    assert [a.approval_id for a in pending] == ["appr-1"]
    assert len(await repo.list_for_date(NAV_DATE)) == 2
    assert (await repo.get_for_run("run-1")) is not None


# ============================================================
# Runs and fund configuration
# ============================================================

@pytest.mark.asyncio
@pytest.mark.integration
async def test_run_roundtrip(db_session):
    repo = NAVRunRepository(db_session)
    started = datetime(2026, 10, 16, 15, 0)
    first = NAVRun(run_id="run-1", nav_date=NAV_DATE, started_at=started, status=NAVRunStatus.IN_PROGRESS)
    retry = NAVRun(
        run_id="run-2", nav_date=NAV_DATE, started_at=started + timedelta(minutes=15),
        status=NAVRunStatus.IN_PROGRESS, triggered_by="RETRY", attempt=2,
    )
    await repo.create(first)
    await repo.create(retry)

    first.status = NAVRunStatus.FAILED
    first.total_funds = 2
    first.add_result(make_result())
    first.errors.append("GLOBAL-BOND/A: timeout")
    first.failed_funds = 1
    first.completed_at = started + timedelta(seconds=3)
    await repo.save(first)

    stored = await repo.get("run-1")
    assert stored.status == NAVRunStatus.FAILED
    assert stored.completed_funds == 1
    assert stored.summary[0].key == KEY
    assert stored.errors == ["GLOBAL-BOND/A: timeout"]
    assert stored.duration_ms == 3000

    latest = await repo.get_latest_for_date(NAV_DATE)
    assert latest.run_id == "run-2"
    assert latest.attempt == 2
    assert [r.run_id for r in await repo.list_recent()] == ["run-2", "run-1"]

    assert await repo.update_if_status("run-2", NAVRunStatus.FAILED, NAVRunStatus.IN_PROGRESS) == TransitionResult.CONFLICT


@pytest.mark.asyncio
@pytest.mark.integration
async def test_fund_config_upsert_and_delete(db_session):
    repo = FundConfigRepository(db_session)
    config = FundConfig(
        fund_id="NORDIC-EQ",
        name="Nordic Equity",
        currency="SEK",
        management_fee_rate=Decimal("0.015"),
        share_classes=[ShareClassConfig("I", management_fee_rate=Decimal("0.0075"))],
    )

    await repo.upsert(config)
    await repo.upsert(FundConfig(
        fund_id="NORDIC-EQ", name="Nordic Equity", currency="SEK",
        management_fee_rate=Decimal("0.012"), active=False,
    ))

    stored = await repo.get("NORDIC-EQ")
    assert stored.management_fee_rate == Decimal("0.012")
    assert stored.share_classes == []
    assert await repo.list_all(active_only=True) == []
    assert len(await repo.list_all()) == 1

    assert await repo.delete("NORDIC-EQ") is True
    assert await repo.delete("NORDIC-EQ") is False
    assert await repo.get("NORDIC-EQ") is None
