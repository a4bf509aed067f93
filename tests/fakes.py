"""
In-memory stand-ins for the database, repositories and Redis.

FakeDatabase keeps a committed snapshot: FakeSession.commit() snapshots the
current state and FakeSession.rollback() (or leaving the session without a
commit) restores it, so tests observe real unit-of-work semantics.
"""

import asyncio
import copy
import fnmatch
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock

from app.models.enums import ReferralStatus, RewardTransactionStatus
from app.utils.datetime_utils import utc_now
from app.utils.exceptions import DuplicateTransactionError


# ---------------------------------------------------------------------------
# Rows
# ---------------------------------------------------------------------------


@dataclass
class UserRow:
    id: int
    username: str | None = None
    referral_code: str | None = None
    balance: Decimal = Decimal("0")
    total_earned: Decimal = Decimal("0")
    referral_chain_flagged: bool = False


@dataclass
class EdgeRow:
    id: int
    referrer_id: int
    referral_id: int
    referral_code: str | None = None
    status: str = ReferralStatus.ACTIVE
    created_at: datetime = field(default_factory=utc_now)
    revoked_at: datetime | None = None


@dataclass
class TxRow:
    id: int
    event_id: str
    beneficiary_id: int
    tier: int
    source_user_id: int
    base_amount: Decimal
    event_type: str | None = None
    reward_amount: Decimal | None = None
    status: str = RewardTransactionStatus.PENDING
    retry_count: int = 0
    last_error: str | None = None
    next_retry_at: datetime | None = None
    enqueued_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def idempotency_key(self) -> tuple[str, int, int]:
        return (self.event_id, self.beneficiary_id, self.tier)


@dataclass
class StatsRow:
    user_id: int
    tier: int
    rewards_count: int = 0
    total_earned: Decimal = Decimal("0")
    last_reward_at: datetime | None = None
    updated_at: datetime = field(default_factory=utc_now)


# ---------------------------------------------------------------------------
# Database and session
# ---------------------------------------------------------------------------


class FakeDatabase:
    """Tables as dicts with commit/rollback snapshots."""

    def __init__(self) -> None:
        self.state: dict[str, Any] = {
            "users": {},
            "edges": {},
            "txs": {},
            "stats": {},
            "next_id": 1,
        }
        self._committed = copy.deepcopy(self.state)
        self.commits = 0
        self.rollbacks = 0

    @property
    def users(self) -> dict[int, UserRow]:
        return self.state["users"]

    @property
    def edges(self) -> dict[int, EdgeRow]:
        return self.state["edges"]

    @property
    def txs(self) -> dict[int, TxRow]:
        return self.state["txs"]

    @property
    def stats(self) -> dict[tuple[int, int], StatsRow]:
        return self.state["stats"]

    def next_id(self) -> int:
        value = self.state["next_id"]
        self.state["next_id"] += 1
        return value

    def commit(self) -> None:
        self._committed = copy.deepcopy(self.state)
        self.commits += 1

    def rollback(self) -> None:
        self.state = copy.deepcopy(self._committed)
        self.rollbacks += 1

    # Setup helpers (committed immediately)

    def add_users(self, *user_ids: int) -> None:
        for user_id in user_ids:
            self.users[user_id] = UserRow(id=user_id, referral_code=f"REF_{user_id:08d}")
        self.commit()

    def link(self, user_id: int, referrer_id: int) -> EdgeRow:
        """Store an active edge without validation."""
        edge = EdgeRow(id=self.next_id(), referrer_id=referrer_id, referral_id=user_id)
        self.edges[edge.id] = edge
        self.commit()
        return edge

    def link_chain(self, *user_ids: int) -> None:
        """link_chain(1, 2, 3): 1 referred by 2, 2 referred by 3."""
        for user_id, referrer_id in zip(user_ids, user_ids[1:]):
            self.link(user_id, referrer_id)

    def tx(self, event_id: str, beneficiary_id: int, tier: int) -> TxRow | None:
        for row in self.txs.values():
            if row.idempotency_key == (event_id, beneficiary_id, tier):
                return row
        return None


class FakeSession:
    """AsyncSession double bound to a FakeDatabase."""

    def __init__(self, db: FakeDatabase) -> None:
        self.db = db
        self.commit = AsyncMock(side_effect=db.commit)
        self.rollback = AsyncMock(side_effect=db.rollback)
        self.flush = AsyncMock()
        self.refresh = AsyncMock()
        self.execute = AsyncMock()

    async def __aenter__(self) -> "FakeSession":
        return self

    async def __aexit__(self, *exc_info) -> None:
        # Closing discards uncommitted work
        self.db.state = copy.deepcopy(self.db._committed)


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class FakeUserRepository:
    def __init__(self, db: FakeDatabase) -> None:
        self.db = db

    async def get_by_id(self, user_id: int) -> UserRow | None:
        return self.db.users.get(user_id)

    async def get_by_referral_code(self, referral_code: str) -> UserRow | None:
        for user in self.db.users.values():
            if user.referral_code == referral_code:
                return user
        return None

    async def get_or_create_referral_code(self, user_id: int) -> str:
        user = self.db.users.get(user_id)
        if user is None:
            raise ValueError(f"User {user_id} not found")
        if not user.referral_code:
            user.referral_code = f"REF_{user_id:08d}"
        return user.referral_code

    async def credit_balance(self, user_id: int, amount: Decimal) -> bool:
        user = self.db.users.get(user_id)
        if user is None:
            return False
        user.balance += amount
        user.total_earned += amount
        return True

    async def set_chain_flag(self, user_id: int, flagged: bool = True) -> None:
        if user_id in self.db.users:
            self.db.users[user_id].referral_chain_flagged = flagged

    async def get_flagged_user_ids(self, limit: int = 100) -> list[int]:
        return sorted(
            user.id for user in self.db.users.values() if user.referral_chain_flagged
        )[:limit]


class FakeReferralRepository:
    def __init__(self, db: FakeDatabase) -> None:
        self.db = db

    def _active(self) -> list[EdgeRow]:
        return [e for e in self.db.edges.values() if e.status == ReferralStatus.ACTIVE]

    async def get_active_edge(self, user_id: int) -> EdgeRow | None:
        for edge in self._active():
            if edge.referral_id == user_id:
                return edge
        return None

    async def get_referrer(self, user_id: int) -> int | None:
        edge = await self.get_active_edge(user_id)
        return edge.referrer_id if edge else None

    async def create_edge(
        self, user_id: int, referrer_id: int, referral_code: str | None = None
    ) -> EdgeRow:
        edge = EdgeRow(
            id=self.db.next_id(),
            referrer_id=referrer_id,
            referral_id=user_id,
            referral_code=referral_code,
        )
        self.db.edges[edge.id] = edge
        return edge

    async def revoke_edge(self, user_id: int) -> EdgeRow | None:
        edge = await self.get_active_edge(user_id)
        if edge is None:
            return None
        edge.status = ReferralStatus.REVOKED
        edge.revoked_at = utc_now()
        return edge

    async def get_referral_ids(self, referrer_ids: list[int]) -> list[int]:
        return [e.referral_id for e in self._active() if e.referrer_id in referrer_ids]

    async def count_direct_referrals(self, user_id: int) -> int:
        return sum(1 for e in self._active() if e.referrer_id == user_id)

    async def get_referred_user_ids(
        self, after_id: int = 0, limit: int = 200
    ) -> list[int]:
        ids = sorted(e.referral_id for e in self._active() if e.referral_id > after_id)
        return ids[:limit]


class FakeRewardTransactionRepository:
    def __init__(self, db: FakeDatabase) -> None:
        self.db = db

    async def create_pending(
        self,
        event_id: str,
        beneficiary_id: int,
        tier: int,
        source_user_id: int,
        base_amount: Decimal,
        event_type: str | None = None,
    ) -> TxRow:
        if self.db.tx(event_id, beneficiary_id, tier) is not None:
            raise DuplicateTransactionError(event_id, beneficiary_id, tier)
        row = TxRow(
            id=self.db.next_id(),
            event_id=event_id,
            beneficiary_id=beneficiary_id,
            tier=tier,
            source_user_id=source_user_id,
            base_amount=Decimal(base_amount),
            event_type=event_type,
        )
        self.db.txs[row.id] = row
        return row

    async def get_by_key(
        self, event_id: str, beneficiary_id: int, tier: int, for_update: bool = False
    ) -> TxRow | None:
        return self.db.tx(event_id, beneficiary_id, tier)

    async def list_by_event(self, event_id: str) -> list[TxRow]:
        return sorted(
            (r for r in self.db.txs.values() if r.event_id == event_id),
            key=lambda r: r.tier,
        )

    async def get_by_id(self, id: int, for_update: bool = False) -> TxRow | None:
        return self.db.txs.get(id)

    async def mark_enqueued(self, transaction_ids: list[int], at: datetime | None = None) -> None:
        for tx_id in transaction_ids:
            self.db.txs[tx_id].enqueued_at = at or utc_now()

    async def mark_completed(self, transaction: TxRow, reward_amount: Decimal) -> None:
        transaction.status = RewardTransactionStatus.COMPLETED
        transaction.reward_amount = reward_amount
        transaction.completed_at = utc_now()
        transaction.next_retry_at = None
        transaction.last_error = None

    async def mark_failed(
        self, event_id: str, beneficiary_id: int, tier: int, error: str
    ) -> int | None:
        row = self.db.tx(event_id, beneficiary_id, tier)
        if row is None or row.status in (
            RewardTransactionStatus.COMPLETED,
            RewardTransactionStatus.DEAD_LETTER,
        ):
            return None
        row.status = RewardTransactionStatus.FAILED
        row.retry_count += 1
        row.last_error = error
        row.updated_at = utc_now()
        return row.retry_count

    async def mark_dead_letter(
        self, event_id: str, beneficiary_id: int, tier: int, error: str
    ) -> bool:
        row = self.db.tx(event_id, beneficiary_id, tier)
        if row is None or row.status == RewardTransactionStatus.COMPLETED:
            return False
        row.status = RewardTransactionStatus.DEAD_LETTER
        row.last_error = error
        row.next_retry_at = None
        return True

    async def list_failed(self, older_than: datetime, limit: int = 500) -> list[TxRow]:
        rows = [
            r for r in self.db.txs.values()
            if r.status == RewardTransactionStatus.FAILED and r.updated_at <= older_than
        ]
        return sorted(rows, key=lambda r: r.updated_at)[:limit]

    async def list_pending(self, older_than: datetime, limit: int = 500) -> list[TxRow]:
        rows = [
            r for r in self.db.txs.values()
            if r.status == RewardTransactionStatus.PENDING
            and r.created_at <= older_than
            and (r.enqueued_at is None or r.enqueued_at <= older_than)
        ]
        return sorted(rows, key=lambda r: r.created_at)[:limit]

    async def list_due_retries(self, now: datetime, limit: int = 500) -> list[TxRow]:
        rows = [
            r for r in self.db.txs.values()
            if r.status == RewardTransactionStatus.RETRY_SCHEDULED
            and r.next_retry_at is not None
            and r.next_retry_at <= now
        ]
        return sorted(rows, key=lambda r: r.next_retry_at)[:limit]

    async def list_dead_letters(self, limit: int = 100) -> list[TxRow]:
        return [
            r for r in self.db.txs.values()
            if r.status == RewardTransactionStatus.DEAD_LETTER
        ][:limit]

    async def count_by_status(self) -> dict[str, int]:
        counts = {status.value: 0 for status in RewardTransactionStatus}
        for row in self.db.txs.values():
            counts[row.status] += 1
        return counts

    async def sum_completed_by_tier(
        self, beneficiary_id: int
    ) -> dict[int, tuple[int, Decimal, datetime | None]]:
        result: dict[int, tuple[int, Decimal, datetime | None]] = {}
        for row in self.db.txs.values():
            if (
                row.beneficiary_id != beneficiary_id
                or row.status != RewardTransactionStatus.COMPLETED
            ):
                continue
            count, total, last_at = result.get(row.tier, (0, Decimal("0"), None))
            result[row.tier] = (
                count + 1,
                total + row.reward_amount,
                max(filter(None, [last_at, row.completed_at]), default=None),
            )
        return result


class FakeReferralStatsRepository:
    def __init__(self, db: FakeDatabase) -> None:
        self.db = db

    async def increment(
        self, user_id: int, tier: int, amount: Decimal, rewarded_at: datetime
    ) -> None:
        row = self.db.stats.setdefault((user_id, tier), StatsRow(user_id=user_id, tier=tier))
        row.rewards_count += 1
        row.total_earned += amount
        row.last_reward_at = rewarded_at
        row.updated_at = rewarded_at

    async def get_for_user(self, user_id: int) -> list[StatsRow]:
        return sorted(
            (row for (uid, _), row in self.db.stats.items() if uid == user_id),
            key=lambda r: r.tier,
        )

    async def replace_for_user(
        self,
        user_id: int,
        per_tier: dict[int, tuple[int, Decimal, datetime | None]],
        updated_at: datetime,
    ) -> None:
        for key in [k for k in self.db.stats if k[0] == user_id]:
            del self.db.stats[key]
        for tier, (count, total, last_at) in per_tier.items():
            self.db.stats[(user_id, tier)] = StatsRow(
                user_id=user_id,
                tier=tier,
                rewards_count=count,
                total_earned=total,
                last_reward_at=last_at,
                updated_at=updated_at,
            )


REPOSITORY_FACTORIES = {
    "user_repo": FakeUserRepository,
    "referral_repo": FakeReferralRepository,
    "tx_repo": FakeRewardTransactionRepository,
    "stats_repo": FakeReferralStatsRepository,
}


def wire(service: Any, db: FakeDatabase) -> Any:
    """Replace every repository reachable from a service with fakes on db."""
    repos = {name: factory(db) for name, factory in REPOSITORY_FACTORIES.items()}
    _wire(service, repos, set())
    return service


def _wire(obj: Any, repos: dict[str, Any], seen: set[int]) -> None:
    if id(obj) in seen or not hasattr(obj, "__dict__"):
        return
    seen.add(id(obj))
    for name, value in list(vars(obj).items()):
        if name in repos:
            setattr(obj, name, repos[name])
        elif type(value).__module__.startswith("app.services"):
            _wire(value, repos, seen)


# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------


class FakePipeline:
    """Buffered pipeline: commands run on execute()."""

    def __init__(self, redis: "FakeRedis") -> None:
        self.redis = redis
        self.commands: list[tuple[str, tuple, dict]] = []

    def __getattr__(self, name: str):
        def queue(*args, **kwargs):
            self.commands.append((name, args, kwargs))
            return self
        return queue

    async def execute(self) -> list[Any]:
        results = []
        for name, args, kwargs in self.commands:
            results.append(await getattr(self.redis, name)(*args, **kwargs))
        self.commands = []
        return results

    async def __aenter__(self) -> "FakePipeline":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.commands = []


class FakeRedis:
    """Subset of redis.asyncio.Redis (decode_responses=True) kept in memory."""

    def __init__(self) -> None:
        self.strings: dict[str, str] = {}
        self.hashes: dict[str, dict[str, str]] = {}
        self.lists: dict[str, list[str]] = {}
        self.published: list[tuple[str, str]] = []
        self.closed = False

    # strings

    async def get(self, key: str) -> str | None:
        return self.strings.get(key)

    async def set(self, key: str, value: Any, ex: int | None = None, nx: bool = False):
        if nx and key in self.strings:
            return None
        self.strings[key] = str(value)
        return True

    async def delete(self, *keys: str) -> int:
        deleted = 0
        for key in keys:
            for store in (self.strings, self.hashes, self.lists):
                if key in store:
                    del store[key]
                    deleted += 1
        return deleted

    async def keys(self, pattern: str = "*") -> list[str]:
        every = set(self.strings) | set(self.hashes) | set(self.lists)
        return sorted(k for k in every if fnmatch.fnmatch(k, pattern))

    async def eval(self, script: str, numkeys: int, *args: str) -> int:
        # Only the lock release script is used
        key, token = args[0], args[1]
        if self.strings.get(key) == token:
            del self.strings[key]
            return 1
        return 0

    # hashes

    async def hset(self, key: str, field: str, value: Any) -> int:
        bucket = self.hashes.setdefault(key, {})
        created = field not in bucket
        bucket[field] = str(value)
        return int(created)

    async def hget(self, key: str, field: str) -> str | None:
        return self.hashes.get(key, {}).get(field)

    async def hmget(self, key: str, fields: list[str]) -> list[str | None]:
        bucket = self.hashes.get(key, {})
        return [bucket.get(f) for f in fields]

    async def hdel(self, key: str, *fields: str) -> int:
        bucket = self.hashes.get(key, {})
        return sum(1 for f in fields if bucket.pop(f, None) is not None)

    # lists (index 0 is the left end)

    async def lpush(self, key: str, *values: str) -> int:
        items = self.lists.setdefault(key, [])
        for value in values:
            items.insert(0, value)
        return len(items)

    async def lrem(self, key: str, count: int, value: str) -> int:
        items = self.lists.get(key, [])
        kept = [item for item in items if item != value]
        removed = len(items) - len(kept)
        self.lists[key] = kept
        return removed

    async def lrange(self, key: str, start: int, end: int) -> list[str]:
        items = self.lists.get(key, [])
        return items[start:] if end == -1 else items[start:end + 1]

    async def llen(self, key: str) -> int:
        return len(self.lists.get(key, []))

    async def blmove(
        self, source: str, destination: str, timeout: float, src: str, dest: str
    ) -> str | None:
        items = self.lists.get(source, [])
        if not items:
            # Block like the real command so idle workers yield
            await asyncio.sleep(min(timeout, 0.05))
            return None
        value = items.pop() if src == "RIGHT" else items.pop(0)
        target = self.lists.setdefault(destination, [])
        if dest == "LEFT":
            target.insert(0, value)
        else:
            target.append(value)
        return value

    # misc

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        return 1

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)

    async def aclose(self) -> None:
        self.closed = True
