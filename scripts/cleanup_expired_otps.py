"""
Purge verification codes and passkey grants that expired more than a day ago,
then print the last 7 days of OTP usage per channel. Meant to run from cron.

Usage:
    python -m scripts.cleanup_expired_otps
    OR
    cd scripts && python cleanup_expired_otps.py
"""
import sys
from pathlib import Path

# Add parent directory to path to import database module
sys.path.append(str(Path(__file__).parent.parent))

from database import SessionLocal
from schemas import OTPChannel
from services.otp_service import OTPService


def cleanup():
    """Run the expiry sweep and report per-channel statistics"""
    db = SessionLocal()
    try:
        service = OTPService(db)
        deleted = service.sweep_expired()
        print(f"SUCCESS: Removed {deleted} expired verification records")
        for channel in OTPChannel:
            stats = service.statistics(channel)
            print(
                f"{channel.value}: total={stats['total']} verified={stats['verified']} "
                f"expired={stats['expired']} max_attempts={stats['maxAttemptsExceeded']} "
                f"rate={stats['verificationRate']}%"
            )
    finally:
        db.close()


if __name__ == "__main__":
    cleanup()
