from contextlib import contextmanager
from datetime import timedelta

from sqlalchemy import event

import models
from database import engine
from models import utcnow
from schemas import OTPChannel, OTPResultCode
from services import otp_service
from services.otp_service import OTPService, MAX_ATTEMPTS, resolve_channel

MOBILE = "+15551234567"


def _record(db, model, token):
    return db.query(model).filter(model.otp_token == token).one()


def test_issue_stores_fresh_record(db):
    issued = OTPService(db).issue(OTPChannel.sms, MOBILE)

    assert len(issued.otp) == 6 and issued.otp.isdigit()
    assert len(issued.token) == 64
    int(issued.token, 16)
    assert issued.expires_in == 600

    record = _record(db, models.SMSOTPCode, issued.token)
    assert record.identifier == MOBILE
    assert record.otp == issued.otp
    assert record.attempts == 0
    assert record.is_used is False
    assert record.verified_at is None
    remaining = record.expires_at - utcnow()
    assert timedelta(minutes=9) < remaining <= timedelta(minutes=10)


def test_codes_may_start_with_zero(monkeypatch):
    monkeypatch.setattr(otp_service.secrets, "randbelow", lambda n: 0)
    assert otp_service.generate_otp() == "000000"


def test_channel_tables(db):
    service = OTPService(db)
    service.issue("sms", MOBILE)
    service.issue("email", "a@example.com")
    service.issue("push", "device-1")

    assert db.query(models.SMSOTPCode).count() == 1
    assert db.query(models.EmailOTPCode).count() == 1
    assert db.query(models.CustomOTPCode).count() == 1
    assert resolve_channel("whatever") == OTPChannel.custom


def test_wrong_then_right_scenario(db, monkeypatch):
    monkeypatch.setattr(otp_service, "generate_otp", lambda length=6: "482913")
    service = OTPService(db)
    issued = service.issue(OTPChannel.sms, MOBILE)
    assert issued.otp == "482913"

    wrong = service.verify(OTPChannel.sms, MOBILE, "000000", issued.token)
    assert wrong.code == OTPResultCode.wrong
    assert wrong.remaining_attempts == 4

    ok = service.verify(OTPChannel.sms, MOBILE, "482913", issued.token)
    assert ok.code == OTPResultCode.verified
    assert ok.success

    assert service.is_grant_valid(OTPChannel.sms, MOBILE, issued.token, 15) is True


def test_second_verify_after_success_is_invalid(db):
    service = OTPService(db)
    issued = service.issue(OTPChannel.email, "a@example.com")

    assert service.verify("email", "a@example.com", issued.otp, issued.token).code == OTPResultCode.verified
    assert service.verify("email", "a@example.com", issued.otp, issued.token).code == OTPResultCode.invalid


def test_unknown_token_or_identifier_is_invalid(db):
    service = OTPService(db)
    issued = service.issue(OTPChannel.sms, MOBILE)

    assert service.verify("sms", MOBILE, issued.otp, "nope").code == OTPResultCode.invalid
    assert service.verify("sms", "+15550000000", issued.otp, issued.token).code == OTPResultCode.invalid
    # Same token on another channel table
    assert service.verify("email", MOBILE, issued.otp, issued.token).code == OTPResultCode.invalid


def test_expired_code_is_left_unused(db):
    service = OTPService(db)
    issued = service.issue(OTPChannel.sms, MOBILE)
    record = _record(db, models.SMSOTPCode, issued.token)
    record.expires_at = utcnow() - timedelta(seconds=1)
    db.commit()

    result = service.verify(OTPChannel.sms, MOBILE, issued.otp, issued.token)

    assert result.code == OTPResultCode.expired
    db.refresh(record)
    assert record.is_used is False
    assert record.attempts == 0


def test_attempt_cap_rejects_correct_code(db):
    service = OTPService(db)
    issued = service.issue(OTPChannel.sms, MOBILE)
    record = _record(db, models.SMSOTPCode, issued.token)
    record.attempts = MAX_ATTEMPTS
    db.commit()

    result = service.verify(OTPChannel.sms, MOBILE, issued.otp, issued.token)

    assert result.code == OTPResultCode.max_attempts
    db.refresh(record)
    assert record.is_used is False


def test_five_wrong_guesses_lock_the_code(db):
    service = OTPService(db)
    issued = service.issue(OTPChannel.sms, MOBILE)
    wrong = "1" * 6 if issued.otp != "1" * 6 else "2" * 6

    remaining = [
        service.verify(OTPChannel.sms, MOBILE, wrong, issued.token).remaining_attempts
        for _ in range(MAX_ATTEMPTS)
    ]
    assert remaining == [4, 3, 2, 1, 0]

    locked = service.verify(OTPChannel.sms, MOBILE, issued.otp, issued.token)
    assert locked.code == OTPResultCode.max_attempts
    assert _record(db, models.SMSOTPCode, issued.token).attempts == MAX_ATTEMPTS


def test_each_token_addresses_its_own_record(db):
    service = OTPService(db)
    first = service.issue(OTPChannel.sms, MOBILE)
    second = service.issue(OTPChannel.sms, MOBILE)

    assert service.verify(OTPChannel.sms, MOBILE, first.otp, first.token).code == OTPResultCode.verified
    assert service.verify(OTPChannel.sms, MOBILE, second.otp, second.token).code == OTPResultCode.verified


def test_grant_requires_verification(db):
    service = OTPService(db)
    issued = service.issue(OTPChannel.sms, MOBILE)

    assert service.is_grant_valid(OTPChannel.sms, MOBILE, issued.token, 15) is False


def test_grant_expires_after_max_age(db):
    service = OTPService(db)
    issued = service.issue(OTPChannel.sms, MOBILE)
    service.verify(OTPChannel.sms, MOBILE, issued.otp, issued.token)

    record = _record(db, models.SMSOTPCode, issued.token)
    record.verified_at = utcnow() - timedelta(minutes=15, seconds=1)
    db.commit()

    assert service.is_grant_valid(OTPChannel.sms, MOBILE, issued.token, 15) is False


def test_invalidate_all_marks_every_record(db):
    service = OTPService(db)
    tokens = [service.issue(OTPChannel.sms, MOBILE).token for _ in range(3)]
    other = service.issue(OTPChannel.sms, "+15559999999")

    assert service.invalidate_all(OTPChannel.sms, MOBILE) == 3

    for token in tokens:
        assert _record(db, models.SMSOTPCode, token).is_used is True
    assert _record(db, models.SMSOTPCode, other.token).is_used is False


def test_sweep_expired_is_idempotent(db):
    service = OTPService(db)
    old = service.issue(OTPChannel.sms, MOBILE)
    recent = service.issue(OTPChannel.email, "a@example.com")
    stale_custom = service.issue("custom", "x")
    db.add(models.PasskeyVerification(
        email="a@example.com",
        passkey_token="t",
        expires_at=utcnow() - timedelta(days=2),
    ))
    db.commit()

    _record(db, models.SMSOTPCode, old.token).expires_at = utcnow() - timedelta(days=2)
    _record(db, models.EmailOTPCode, recent.token).expires_at = utcnow() - timedelta(hours=1)
    _record(db, models.CustomOTPCode, stale_custom.token).expires_at = utcnow() - timedelta(days=3)
    db.commit()

    assert service.sweep_expired() == 3
    assert service.sweep_expired() == 0

    assert db.query(models.SMSOTPCode).count() == 0
    assert db.query(models.EmailOTPCode).count() == 1
    assert db.query(models.CustomOTPCode).count() == 0
    assert db.query(models.PasskeyVerification).count() == 0


def test_statistics(db):
    service = OTPService(db)
    assert service.statistics(OTPChannel.sms)["verificationRate"] == 0

    verified = service.issue(OTPChannel.sms, MOBILE)
    service.issue(OTPChannel.sms, MOBILE)
    service.verify(OTPChannel.sms, MOBILE, verified.otp, verified.token)

    stats = service.statistics(OTPChannel.sms)
    assert stats["total"] == 2
    assert stats["verified"] == 1
    assert stats["expired"] == 0
    assert stats["maxAttemptsExceeded"] == 0
    assert stats["verificationRate"] == "50.00"


@contextmanager
def _attempts_maxed_before(statement_prefix):
    """Push every sms code to the cap just before the matching UPDATE runs."""
    fired = []

    def bump(conn, cursor, statement, parameters, context, executemany):
        if not fired and statement.startswith(statement_prefix):
            fired.append(statement)
            cursor.execute(f"UPDATE otp_codes SET attempts = {MAX_ATTEMPTS}")

    event.listen(engine, "before_cursor_execute", bump)
    try:
        yield fired
    finally:
        event.remove(engine, "before_cursor_execute", bump)


def test_concurrent_guess_cannot_exceed_attempt_cap(db):
    service = OTPService(db)
    issued = service.issue(OTPChannel.sms, MOBILE)
    wrong = "1" * 6 if issued.otp != "1" * 6 else "2" * 6

    with _attempts_maxed_before("UPDATE otp_codes SET attempts") as fired:
        result = service.verify(OTPChannel.sms, MOBILE, wrong, issued.token)

    assert fired
    assert result.code == OTPResultCode.max_attempts
    assert result.remaining_attempts is None
    assert _record(db, models.SMSOTPCode, issued.token).attempts == MAX_ATTEMPTS


def test_correct_code_not_consumed_once_cap_reached_concurrently(db):
    service = OTPService(db)
    issued = service.issue(OTPChannel.sms, MOBILE)

    with _attempts_maxed_before("UPDATE otp_codes SET is_used") as fired:
        result = service.verify(OTPChannel.sms, MOBILE, issued.otp, issued.token)

    assert fired
    assert not result.success
    record = _record(db, models.SMSOTPCode, issued.token)
    assert record.is_used is False
    assert record.verified_at is None
    assert record.attempts == MAX_ATTEMPTS


def test_consume_grant_is_single_use(db):
    service = OTPService(db)
    issued = service.issue(OTPChannel.sms, MOBILE)
    assert service.consume_grant(OTPChannel.sms, MOBILE, issued.token) is False

    service.verify(OTPChannel.sms, MOBILE, issued.otp, issued.token)

    assert service.consume_grant(OTPChannel.sms, MOBILE, issued.token) is True
    assert service.consume_grant(OTPChannel.sms, MOBILE, issued.token) is False
    assert service.is_grant_valid(OTPChannel.sms, MOBILE, issued.token) is False


def test_consume_grant_respects_max_age(db):
    service = OTPService(db)
    issued = service.issue(OTPChannel.email, "a@example.com")
    service.verify(OTPChannel.email, "a@example.com", issued.otp, issued.token)
    record = _record(db, models.EmailOTPCode, issued.token)
    record.verified_at = utcnow() - timedelta(minutes=16)
    db.commit()

    assert service.consume_grant(OTPChannel.email, "a@example.com", issued.token, 15) is False


def test_sweep_single_channel(db):
    service = OTPService(db)
    sms = service.issue(OTPChannel.sms, MOBILE)
    email = service.issue(OTPChannel.email, "a@example.com")
    db.add(models.PasskeyVerification(
        email="a@example.com",
        passkey_token="t",
        expires_at=utcnow() - timedelta(days=2),
    ))
    _record(db, models.SMSOTPCode, sms.token).expires_at = utcnow() - timedelta(days=2)
    _record(db, models.EmailOTPCode, email.token).expires_at = utcnow() - timedelta(days=2)
    db.commit()

    assert service.sweep_expired(OTPChannel.sms) == 1

    assert db.query(models.SMSOTPCode).count() == 0
    assert db.query(models.EmailOTPCode).count() == 1
    assert db.query(models.PasskeyVerification).count() == 1
