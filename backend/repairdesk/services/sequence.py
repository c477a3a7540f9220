from __future__ import annotations
"""Human-readable identifiers of the form ``{COMPANY}-{BRANCH}-{YYYYMMDD}-{NNNN}``.

The per-day number comes from a counter row in ``ticket_sequences`` that is
incremented in place (``UPDATE ... SET last_value = last_value + 1``) inside the
caller's transaction. The row write serializes concurrent generators until the
caller commits, so two in-flight requests never read the same value. Each
candidate is still checked against the target table's unique code column (codes
inserted by other means, e.g. imports); a taken code advances the counter, and
the unique constraint on that column backs the guarantee at commit time.
"""
import logging
import re
from datetime import date, datetime
from typing import Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from repairdesk.config import ticketing as ticketing_cfg
from repairdesk.errors import ConflictRetryableError
from repairdesk.models.sequence import TicketSequence
from repairdesk.models.ticket import Ticket

logger = logging.getLogger(__name__)

LEGACY_FORMAT = re.compile(r'^TKT-\d{8}-\d{4}$')
CODE_FORMAT = re.compile(r'^([A-Z]{2,5})-([A-Z0-9]{2,4})-(\d{8})-(\d{4,6})$')


class SequenceGenerator:
    def __init__(self, session, company_code: str = ticketing_cfg.DEFAULT_COMPANY_CODE,
                 branch_code: str = ticketing_cfg.DEFAULT_BRANCH_CODE,
                 sequence_length: int = ticketing_cfg.DEFAULT_SEQUENCE_LENGTH,
                 max_attempts: int = ticketing_cfg.DEFAULT_MAX_ATTEMPTS,
                 clock: Optional[Callable[[], datetime]] = None,
                 code_column=Ticket.code):
        self.session = session
        self.company_code = company_code.upper()
        self.branch_code = branch_code.upper()
        self.sequence_length = sequence_length
        self.max_attempts = max_attempts
        self.clock = clock or datetime.now
        self.code_column = code_column

    @classmethod
    def from_config(cls, session, config, branch_key: str = 'TICKET_BRANCH_CODE', **kwargs):
        settings = ticketing_cfg.load_ticketing_config(config.get)
        return cls(
            session,
            company_code=settings['TICKET_COMPANY_CODE'],
            branch_code=settings[branch_key],
            sequence_length=settings['TICKET_SEQUENCE_LENGTH'],
            max_attempts=settings['TICKET_SEQUENCE_MAX_ATTEMPTS'],
            **kwargs,
        )

    @property
    def prefix(self) -> str:
        return f'{self.company_code}-{self.branch_code}'

    def format_code(self, day: date, number: int) -> str:
        return f"{self.prefix}-{day.strftime('%Y%m%d')}-{str(number).zfill(self.sequence_length)}"

    def generate(self) -> str:
        """Return an unused code for today. Runs inside the caller's transaction."""
        day = self.clock().date()
        seq_key = f"{self.prefix}-{day.strftime('%Y%m%d')}"
        for attempt in range(1, self.max_attempts + 1):
            number = self._next_value(seq_key)
            code = self.format_code(day, number)
            if not self._code_exists(code):
                return code
            logger.warning('identifier %s already taken (attempt %s/%s)', code, attempt, self.max_attempts)
        raise ConflictRetryableError(
            f'Could not allocate an identifier for {seq_key} after {self.max_attempts} attempts',
            entity='TicketSequence',
            entity_id=seq_key,
        )

    def _next_value(self, seq_key: str) -> int:
        stmt = (
            update(TicketSequence)
            .where(TicketSequence.seq_key == seq_key)
            .values(last_value=TicketSequence.last_value + 1)
            .execution_options(synchronize_session=False)
        )
        if self.session.execute(stmt).rowcount == 0:
            try:
                with self.session.begin_nested():
                    self.session.add(TicketSequence(seq_key=seq_key, last_value=1))
                return 1
            except IntegrityError:
                # another writer created the row first; its counter is now authoritative
                self.session.execute(stmt)
        return self.session.execute(
            select(TicketSequence.last_value).where(TicketSequence.seq_key == seq_key)
        ).scalar_one()

    def _code_exists(self, code: str) -> bool:
        return self.session.execute(
            select(self.code_column).where(self.code_column == code).limit(1)
        ).first() is not None

    # ---------- Parsing helpers (pure) ---------- #

    @staticmethod
    def is_valid_format(code: Optional[str]) -> bool:
        if not code:
            return False
        return bool(LEGACY_FORMAT.match(code) or CODE_FORMAT.match(code))

    @staticmethod
    def extract_date(code: str) -> date:
        if not SequenceGenerator.is_valid_format(code):
            raise ValueError(f'invalid identifier format: {code!r}')
        digits = code.split('-')[-2]
        return datetime.strptime(digits, '%Y%m%d').date()

    @staticmethod
    def extract_company_code(code: str) -> Optional[str]:
        m = CODE_FORMAT.match(code or '')
        return m.group(1) if m else None

    @staticmethod
    def extract_branch_code(code: str) -> Optional[str]:
        m = CODE_FORMAT.match(code or '')
        return m.group(2) if m else None

    @staticmethod
    def format_for_display(code: str) -> str:
        return (code or '').replace('-', ' ')
