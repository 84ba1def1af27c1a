from __future__ import annotations

import logging
import os
import socket
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterator

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from contentflow.core.errors import StageBusyError
from contentflow.models.stage_lease import StageLease
from contentflow.services.job_store import utcnow

logger = logging.getLogger(__name__)

TIMEOUTS_STAGE = "timeouts"


def new_holder_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


@dataclass
class Lease:
    manager: "StageLeaseManager"
    stage: str
    holder: str

    def renew(self) -> bool:
        return self.manager.renew(self.stage, self.holder)


class StageLeaseManager:
    """
    One lease row per stage key. A lease is taken with a conditional UPDATE
    (free or expired rows only) so two overlapping scheduler fires cannot
    both win; the first acquisition of a stage inserts the row and relies on
    the primary key for the same guarantee. An expired lease is how a crashed
    holder gives the stage back.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        ttl_seconds: int = 3600,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    def acquire(self, stage: str, holder: str) -> bool:
        now = self._clock()
        expires = now + self.ttl
        with self._session_factory() as db:
            res = db.execute(
                update(StageLease)
                .where(
                    StageLease.stage == stage,
                    or_(StageLease.holder.is_(None), StageLease.expires_at < now),
                )
                .values(holder=holder, acquired_at=now, expires_at=expires)
            )
            if res.rowcount == 1:
                db.commit()
                return True

            if db.get(StageLease, stage) is not None:
                db.rollback()
                return False

            db.add(StageLease(stage=stage, holder=holder, acquired_at=now, expires_at=expires))
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                return False
            return True

    def renew(self, stage: str, holder: str) -> bool:
        with self._session_factory() as db:
            res = db.execute(
                update(StageLease)
                .where(StageLease.stage == stage, StageLease.holder == holder)
                .values(expires_at=self._clock() + self.ttl)
            )
            db.commit()
            return res.rowcount == 1

    def release(self, stage: str, holder: str) -> bool:
        with self._session_factory() as db:
            res = db.execute(
                update(StageLease)
                .where(StageLease.stage == stage, StageLease.holder == holder)
                .values(holder=None, acquired_at=None, expires_at=None)
            )
            db.commit()
            released = res.rowcount == 1
        if not released:
            logger.warning("Lease for %s was no longer held by %s at release", stage, holder)
        return released

    @contextmanager
    def hold(self, stage: str) -> Iterator[Lease]:
        holder = new_holder_id()
        if not self.acquire(stage, holder):
            raise StageBusyError(stage)
        logger.debug("Acquired %s lease as %s", stage, holder)
        try:
            yield Lease(self, stage, holder)
        finally:
            self.release(stage, holder)
