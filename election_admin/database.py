"""Storage for admins, election graphs and ballots.

Two backends share one async interface: ``MemoryDatabase`` keeps everything
in process, ``Database`` talks to PostgreSQL through an asyncpg pool. Both
store an election together with its questions and options as one unit, and
both delete children explicitly when a parent goes away.
"""
import copy
import json
import logging
from typing import Dict, List, Optional

import asyncpg

from .config import settings
from .errors import InvalidStateError
from .models import Admin, Ballot, Election, ElectionState, Option, Question

logger = logging.getLogger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS admins (
    id SERIAL PRIMARY KEY,
    name TEXT NOT NULL,
    email TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS elections (
    id SERIAL PRIMARY KEY,
    owner_id INTEGER NOT NULL REFERENCES admins(id),
    name TEXT NOT NULL,
    state TEXT NOT NULL DEFAULT 'draft',
    next_question_id INTEGER NOT NULL DEFAULT 1,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    launched_at TIMESTAMPTZ,
    ended_at TIMESTAMPTZ
);

CREATE TABLE IF NOT EXISTS questions (
    election_id INTEGER NOT NULL REFERENCES elections(id),
    id INTEGER NOT NULL,
    position INTEGER NOT NULL,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    next_option_id INTEGER NOT NULL DEFAULT 1,
    PRIMARY KEY (election_id, id)
);

CREATE TABLE IF NOT EXISTS options (
    election_id INTEGER NOT NULL,
    question_id INTEGER NOT NULL,
    id INTEGER NOT NULL,
    position INTEGER NOT NULL,
    value TEXT NOT NULL,
    PRIMARY KEY (election_id, question_id, id),
    FOREIGN KEY (election_id, question_id) REFERENCES questions(election_id, id)
);

CREATE TABLE IF NOT EXISTS ballots (
    id SERIAL PRIMARY KEY,
    election_id INTEGER NOT NULL REFERENCES elections(id),
    voter_digest TEXT NOT NULL,
    selections JSONB NOT NULL,
    cast_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (election_id, voter_digest)
);

CREATE INDEX IF NOT EXISTS idx_elections_owner ON elections(owner_id);
"""


# States a stored election may be in when a save writes the given state
PRIOR_STATES = {
    ElectionState.DRAFT: (ElectionState.DRAFT,),
    ElectionState.LAUNCHED: (ElectionState.DRAFT, ElectionState.LAUNCHED),
    ElectionState.ENDED: (ElectionState.LAUNCHED, ElectionState.ENDED),
}


def _stale_state(election: Election, stored_state: str) -> InvalidStateError:
    return InvalidStateError(
        f"Election {election.id} changed to {stored_state} while being edited",
        election_id=election.id,
        state=stored_state
    )


def _selections_from_json(raw) -> Dict[int, int]:
    data = json.loads(raw) if isinstance(raw, str) else raw
    return {int(k): int(v) for k, v in data.items()}


class MemoryDatabase:
    """In-process storage; returns copies so callers must save to persist."""

    def __init__(self):
        self.admins: Dict[int, Admin] = {}
        self.elections: Dict[int, Election] = {}
        self.ballots: Dict[int, Dict[str, Ballot]] = {}
        self._next_admin_id = 1
        self._next_election_id = 1

    async def initialize(self):
        logger.info("In-memory storage initialized")

    async def close(self):
        pass

    async def check_health(self) -> bool:
        return True

    async def create_user(self, name: str, email: str, password_hash: str) -> Optional[Admin]:
        """Create an admin; returns None when the email is taken."""
        if any(a.email == email for a in self.admins.values()):
            logger.warning(f"Admin with email {email} already exists")
            return None
        admin = Admin(
            id=self._next_admin_id,
            name=name,
            email=email,
            password_hash=password_hash,
        )
        self._next_admin_id += 1
        self.admins[admin.id] = admin
        return copy.deepcopy(admin)

    async def get_user(self, admin_id: int) -> Optional[Admin]:
        admin = self.admins.get(admin_id)
        return copy.deepcopy(admin) if admin else None

    async def get_user_by_email(self, email: str) -> Optional[Admin]:
        for admin in self.admins.values():
            if admin.email == email:
                return copy.deepcopy(admin)
        return None

    async def insert_election(self, election: Election) -> Election:
        stored = copy.deepcopy(election)
        stored.id = self._next_election_id
        self._next_election_id += 1
        self.elections[stored.id] = stored
        return copy.deepcopy(stored)

    async def get_election(self, election_id: int) -> Optional[Election]:
        election = self.elections.get(election_id)
        return copy.deepcopy(election) if election else None

    async def list_elections(self, owner_id: int) -> List[Election]:
        return [
            copy.deepcopy(e)
            for e in sorted(self.elections.values(), key=lambda e: e.id)
            if e.owner_id == owner_id
        ]

    async def save_election(self, election: Election) -> None:
        if election.id not in self.elections:
            raise KeyError(f"Election {election.id} is not stored")
        stored_state = self.elections[election.id].state
        if stored_state not in PRIOR_STATES[election.state]:
            raise _stale_state(election, stored_state.value)
        self.elections[election.id] = copy.deepcopy(election)

    async def delete_election(self, election_id: int) -> bool:
        self.ballots.pop(election_id, None)
        return self.elections.pop(election_id, None) is not None

    async def record_ballot(self, ballot: Ballot) -> bool:
        """Store a ballot; returns False if this voter already has one."""
        cast = self.ballots.setdefault(ballot.election_id, {})
        if ballot.voter_digest in cast:
            return False
        cast[ballot.voter_digest] = copy.deepcopy(ballot)
        return True

    async def list_ballots(self, election_id: int) -> List[Ballot]:
        return [copy.deepcopy(b) for b in self.ballots.get(election_id, {}).values()]


class Database:
    """Async PostgreSQL database manager."""

    def __init__(self):
        self.pool: Optional[asyncpg.Pool] = None

    async def initialize(self):
        """Initialize database connection pool and create tables."""
        try:
            self.pool = await asyncpg.create_pool(
                settings.postgres_dsn,
                min_size=settings.POSTGRES_POOL_MIN_SIZE,
                max_size=settings.POSTGRES_POOL_MAX_SIZE,
                command_timeout=settings.POSTGRES_COMMAND_TIMEOUT
            )
            logger.info("PostgreSQL connection pool initialized successfully")

            async with self.pool.acquire() as conn:
                await conn.execute(SCHEMA)
                logger.info("PostgreSQL schema verified")

        except Exception as e:
            logger.error(f"Failed to initialize PostgreSQL connection pool: {e}")
            raise

    async def close(self):
        """Close database connection pool."""
        try:
            if self.pool:
                await self.pool.close()
                logger.info("PostgreSQL connection pool closed successfully")
        except Exception as e:
            logger.error(f"Error closing PostgreSQL connection pool: {e}")

    async def check_health(self) -> bool:
        """Check database connection health."""
        try:
            if not self.pool:
                return False
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return False

    # Admins

    @staticmethod
    def _admin(row) -> Admin:
        return Admin(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            password_hash=row["password_hash"],
            created_at=row["created_at"],
        )

    async def create_user(self, name: str, email: str, password_hash: str) -> Optional[Admin]:
        """Create an admin; returns None when the email is taken."""
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    """
                    INSERT INTO admins (name, email, password_hash)
                    VALUES ($1, $2, $3)
                    RETURNING id, name, email, password_hash, created_at
                    """,
                    name, email, password_hash
                )
                return self._admin(row)
        except asyncpg.UniqueViolationError:
            logger.warning(f"Admin with email {email} already exists")
            return None
        except Exception as e:
            logger.error(f"Error creating admin {email}: {e}")
            raise

    async def get_user(self, admin_id: int) -> Optional[Admin]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT id, name, email, password_hash, created_at FROM admins WHERE id = $1",
                admin_id
            )
            return self._admin(row) if row else None

    async def get_user_by_email(self, email: str) -> Optional[Admin]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT id, name, email, password_hash, created_at FROM admins WHERE email = $1",
                email
            )
            return self._admin(row) if row else None

    # Elections

    async def _load_graphs(self, conn, rows) -> List[Election]:
        """Attach questions and options to election rows."""
        if not rows:
            return []
        ids = [row["id"] for row in rows]
        question_rows = await conn.fetch(
            """
            SELECT election_id, id, title, description, next_option_id
            FROM questions
            WHERE election_id = ANY($1::int[])
            ORDER BY election_id, position
            """,
            ids
        )
        option_rows = await conn.fetch(
            """
            SELECT election_id, question_id, id, value
            FROM options
            WHERE election_id = ANY($1::int[])
            ORDER BY election_id, question_id, position
            """,
            ids
        )

        options: Dict[tuple, List[Option]] = {}
        for row in option_rows:
            options.setdefault((row["election_id"], row["question_id"]), []).append(
                Option(id=row["id"], value=row["value"])
            )

        questions: Dict[int, List[Question]] = {}
        for row in question_rows:
            questions.setdefault(row["election_id"], []).append(
                Question(
                    id=row["id"],
                    title=row["title"],
                    description=row["description"],
                    options=options.get((row["election_id"], row["id"]), []),
                    next_option_id=row["next_option_id"],
                )
            )

        return [
            Election(
                id=row["id"],
                name=row["name"],
                owner_id=row["owner_id"],
                state=ElectionState(row["state"]),
                questions=questions.get(row["id"], []),
                next_question_id=row["next_question_id"],
                created_at=row["created_at"],
                launched_at=row["launched_at"],
                ended_at=row["ended_at"],
            )
            for row in rows
        ]

    async def insert_election(self, election: Election) -> Election:
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    """
                    INSERT INTO elections (owner_id, name, state, next_question_id, created_at)
                    VALUES ($1, $2, $3, $4, $5)
                    RETURNING id
                    """,
                    election.owner_id, election.name, election.state.value,
                    election.next_question_id, election.created_at
                )
                election.id = row["id"]
                return election
        except Exception as e:
            logger.error(f"Error inserting election for owner {election.owner_id}: {e}")
            raise

    async def get_election(self, election_id: int) -> Optional[Election]:
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch("SELECT * FROM elections WHERE id = $1", election_id)
                graphs = await self._load_graphs(conn, rows)
                return graphs[0] if graphs else None
        except Exception as e:
            logger.error(f"Error getting election {election_id}: {e}")
            raise

    async def list_elections(self, owner_id: int) -> List[Election]:
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    "SELECT * FROM elections WHERE owner_id = $1 ORDER BY id",
                    owner_id
                )
                return await self._load_graphs(conn, rows)
        except Exception as e:
            logger.error(f"Error listing elections for owner {owner_id}: {e}")
            raise

    async def save_election(self, election: Election) -> None:
        """Write the election and its whole question/option tree in one transaction."""
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    stored_state = await conn.fetchval(
                        "SELECT state FROM elections WHERE id = $1 FOR UPDATE",
                        election.id
                    )
                    if stored_state is None:
                        raise KeyError(f"Election {election.id} is not stored")
                    if stored_state not in [s.value for s in PRIOR_STATES[election.state]]:
                        raise _stale_state(election, stored_state)

                    await conn.execute(
                        """
                        UPDATE elections
                        SET name = $2, state = $3, next_question_id = $4,
                            launched_at = $5, ended_at = $6
                        WHERE id = $1
                        """,
                        election.id, election.name, election.state.value,
                        election.next_question_id, election.launched_at, election.ended_at
                    )
                    await conn.execute("DELETE FROM options WHERE election_id = $1", election.id)
                    await conn.execute("DELETE FROM questions WHERE election_id = $1", election.id)

                    await conn.executemany(
                        """
                        INSERT INTO questions
                        (election_id, id, position, title, description, next_option_id)
                        VALUES ($1, $2, $3, $4, $5, $6)
                        """,
                        [
                            (election.id, q.id, position, q.title, q.description, q.next_option_id)
                            for position, q in enumerate(election.questions)
                        ]
                    )
                    await conn.executemany(
                        """
                        INSERT INTO options (election_id, question_id, id, position, value)
                        VALUES ($1, $2, $3, $4, $5)
                        """,
                        [
                            (election.id, q.id, o.id, position, o.value)
                            for q in election.questions
                            for position, o in enumerate(q.options)
                        ]
                    )
        except Exception as e:
            logger.error(f"Error saving election {election.id}: {e}")
            raise

    async def delete_election(self, election_id: int) -> bool:
        """Delete ballots, options, questions and the election row."""
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    await conn.execute("DELETE FROM ballots WHERE election_id = $1", election_id)
                    await conn.execute("DELETE FROM options WHERE election_id = $1", election_id)
                    await conn.execute("DELETE FROM questions WHERE election_id = $1", election_id)
                    deleted = await conn.fetchval(
                        "DELETE FROM elections WHERE id = $1 RETURNING id",
                        election_id
                    )
                    return deleted is not None
        except Exception as e:
            logger.error(f"Error deleting election {election_id}: {e}")
            raise

    # Ballots

    async def record_ballot(self, ballot: Ballot) -> bool:
        """Store a ballot; returns False if this voter already has one."""
        try:
            async with self.pool.acquire() as conn:
                ballot_id = await conn.fetchval(
                    """
                    INSERT INTO ballots (election_id, voter_digest, selections, cast_at)
                    VALUES ($1, $2, $3::jsonb, $4)
                    ON CONFLICT (election_id, voter_digest) DO NOTHING
                    RETURNING id
                    """,
                    ballot.election_id, ballot.voter_digest,
                    json.dumps(ballot.selections), ballot.cast_at
                )
                return ballot_id is not None
        except Exception as e:
            logger.error(f"Error recording ballot for election {ballot.election_id}: {e}")
            raise

    async def list_ballots(self, election_id: int) -> List[Ballot]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT election_id, voter_digest, selections, cast_at
                FROM ballots WHERE election_id = $1 ORDER BY id
                """,
                election_id
            )
            return [
                Ballot(
                    election_id=row["election_id"],
                    voter_digest=row["voter_digest"],
                    selections=_selections_from_json(row["selections"]),
                    cast_at=row["cast_at"],
                )
                for row in rows
            ]


def create_database(backend: Optional[str] = None):
    """Build the storage backend named by ``backend`` or the settings."""
    backend = (backend or settings.STORAGE_BACKEND).lower()
    if backend == "memory":
        return MemoryDatabase()
    if backend == "postgres":
        return Database()
    raise ValueError(f"Unknown storage backend: {backend}")
