"""
E-mail verification codes.

Codes are six digits, valid for CODE_TTL_MINUTES and usable once. A code
is void after MAX_ATTEMPTS wrong guesses. Only an HMAC of each code is
persisted, so the store survives restarts and can be shared by several app
processes.
"""
import hmac
import hashlib
import secrets
import logging
from datetime import datetime, timedelta

from flask import current_app

from ..errors import Expired, NotFoundError, ValidationError
from ..models import db, VerificationCode

logger = logging.getLogger(__name__)

PURPOSE_SIGNUP = "signup"
PURPOSE_RESET = "reset"
PURPOSES = (PURPOSE_SIGNUP, PURPOSE_RESET)
# Wrong guesses allowed against one code before it is void
MAX_ATTEMPTS = 5


class CodeStore:
    """Interface for verification code storage."""

    def issue(self, email, purpose=PURPOSE_SIGNUP):
        raise NotImplementedError

    def consume(self, email, code, purpose=PURPOSE_SIGNUP):
        raise NotImplementedError


class VerificationCodeStore(CodeStore):
    """Database-backed code store using the ``verification_codes`` table."""

    def __init__(self, ttl_minutes=None):
        self.ttl_minutes = ttl_minutes

    def _ttl(self):
        if self.ttl_minutes is not None:
            return self.ttl_minutes
        return current_app.config.get("CODE_TTL_MINUTES", 10)

    @staticmethod
    def _hash(email, code):
        secret = current_app.config["SECRET_KEY"]
        secret_bytes = secret.encode() if isinstance(secret, str) else secret
        return hmac.new(secret_bytes, f"{email}:{code}".encode(), hashlib.sha256).hexdigest()

    def purge_expired(self, now=None):
        now = now or datetime.utcnow()
        removed = VerificationCode.query.filter(VerificationCode.expires_at < now).delete(
            synchronize_session=False
        )
        if removed:
            logger.debug("Purged %d expired verification codes", removed)
        return removed

    def issue(self, email, purpose=PURPOSE_SIGNUP):
        """Create a new code for ``email``, replacing any unused one."""
        if purpose not in PURPOSES:
            raise ValidationError("Unknown verification purpose")
        now = datetime.utcnow()
        self.purge_expired(now)
        VerificationCode.query.filter_by(email=email, purpose=purpose, used=False).delete(
            synchronize_session=False
        )

        code = f"{secrets.randbelow(10 ** 6):06d}"
        db.session.add(VerificationCode(
            email=email,
            purpose=purpose,
            code_hash=self._hash(email, code),
            created_at=now,
            expires_at=now + timedelta(minutes=self._ttl()),
        ))
        db.session.commit()
        return code

    def consume(self, email, code, purpose=PURPOSE_SIGNUP):
        """
        Mark the code as used. The caller commits, so the code is only spent
        when the surrounding change succeeds.
        """
        record = (
            VerificationCode.query
            .filter_by(email=email, purpose=purpose, used=False)
            .order_by(VerificationCode.created_at.desc())
            .first()
        )
        if record is None:
            raise NotFoundError("No verification code was requested for this email")
        if record.expires_at < datetime.utcnow():
            raise Expired("Verification code has expired")
        if (record.attempts or 0) >= MAX_ATTEMPTS:
            raise Expired("Too many incorrect attempts, request a new code")

        expected = self._hash(email, str(code or "").strip())
        if not hmac.compare_digest(expected, record.code_hash):
            # The count must persist even though the request fails
            record.attempts = (record.attempts or 0) + 1
            db.session.commit()
            logger.warning("Wrong verification code for %s (%d/%d)", email, record.attempts, MAX_ATTEMPTS)
            if record.attempts >= MAX_ATTEMPTS:
                raise Expired("Too many incorrect attempts, request a new code")
            raise ValidationError("Invalid verification code")

        record.used = True
        record.used_at = datetime.utcnow()
        return record
