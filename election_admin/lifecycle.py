"""
Election lifecycle manager.

Owns the Election -> Question -> Option graph and enforces its rules:

- An election moves draft -> launched -> ended and never back.
- Questions and options can only be added, edited or deleted while the
  election is a draft.
- Only the admin who created an election can read or change it.
- Ballots are accepted only while the election is launched; results are
  available once it has been launched.

Every owner-facing call takes a RequestContext and runs as one
load / check / mutate / save cycle against the storage backend. Checks run
in a fixed order: existence, ownership, state, then input.
"""
import functools
import logging
from typing import Any, Dict, List

from .errors import (
    DuplicateBallotError,
    ElectionAdminError,
    InvalidStateError,
    NotFoundError,
    OwnershipError,
    ValidationError,
)
from .metrics import ballots_cast, lifecycle_operations, lifecycle_rejections
from .models import (
    Ballot,
    Election,
    ElectionState,
    Option,
    Question,
    RequestContext,
    generate_voter_digest,
    utcnow,
)

logger = logging.getLogger(__name__)


def tracked(operation: str):
    """Count successes and rejections of a lifecycle operation."""
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                result = await func(*args, **kwargs)
            except ElectionAdminError as e:
                lifecycle_rejections.labels(
                    operation=operation,
                    error_type=type(e).__name__
                ).inc()
                logger.warning(f"{operation} rejected: {e.message}")
                raise
            lifecycle_operations.labels(operation=operation).inc()
            return result
        return wrapper
    return decorator


def _require_text(value: str, field: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{field.capitalize()} cannot be empty", field=field)
    return value


class ElectionManager:
    """Applies lifecycle operations to elections held in a storage backend."""

    def __init__(self, database):
        self.database = database

    async def _load(self, ctx: RequestContext, election_id: int) -> Election:
        election = await self.database.get_election(election_id)
        if election is None:
            raise NotFoundError(f"Election {election_id} not found", election_id=election_id)
        if election.owner_id != ctx.owner_id:
            raise OwnershipError(
                f"Election {election_id} belongs to another admin",
                election_id=election_id
            )
        return election

    @staticmethod
    def _require_draft(election: Election, action: str) -> None:
        if election.state != ElectionState.DRAFT:
            raise InvalidStateError(
                f"Cannot {action}: election {election.id} is {election.state.value}",
                election_id=election.id,
                state=election.state.value
            )

    @staticmethod
    def _question(election: Election, question_id: int) -> Question:
        question = election.find_question(question_id)
        if question is None:
            raise NotFoundError(
                f"Question {question_id} not found in election {election.id}",
                election_id=election.id,
                question_id=question_id
            )
        return question

    @staticmethod
    def _option(election: Election, question: Question, option_id: int) -> Option:
        option = question.find_option(option_id)
        if option is None:
            raise NotFoundError(
                f"Option {option_id} not found in question {question.id}",
                election_id=election.id,
                question_id=question.id,
                option_id=option_id
            )
        return option

    # Elections

    async def list_elections(self, ctx: RequestContext) -> List[Election]:
        return await self.database.list_elections(ctx.owner_id)

    async def get(self, ctx: RequestContext, election_id: int) -> Election:
        return await self._load(ctx, election_id)

    @tracked("create")
    async def create(self, ctx: RequestContext, name: str) -> Election:
        """Create a draft election owned by the caller."""
        name = _require_text(name, "name")
        election = await self.database.insert_election(
            Election(id=None, name=name, owner_id=ctx.owner_id)
        )
        logger.info(f"Election created: id={election.id}, owner={ctx.owner_id}")
        return election

    @tracked("rename")
    async def rename(self, ctx: RequestContext, election_id: int, new_name: str) -> Election:
        election = await self._load(ctx, election_id)
        election.name = _require_text(new_name, "name")
        await self.database.save_election(election)
        return election

    @tracked("delete")
    async def delete(self, ctx: RequestContext, election_id: int) -> None:
        """Delete an election with all of its questions, options and ballots."""
        election = await self._load(ctx, election_id)
        await self.database.delete_election(election.id)
        logger.info(f"Election deleted: id={election_id}, questions={len(election.questions)}")

    @tracked("launch")
    async def launch(self, ctx: RequestContext, election_id: int) -> Election:
        election = await self._load(ctx, election_id)
        if election.state != ElectionState.DRAFT:
            raise InvalidStateError(
                f"Election {election_id} is already {election.state.value}",
                election_id=election_id,
                state=election.state.value
            )
        election.state = ElectionState.LAUNCHED
        election.launched_at = utcnow()
        await self.database.save_election(election)
        logger.info(f"Election launched: id={election_id}")
        return election

    @tracked("end")
    async def end(self, ctx: RequestContext, election_id: int) -> Election:
        election = await self._load(ctx, election_id)
        if election.state != ElectionState.LAUNCHED:
            raise InvalidStateError(
                f"Election {election_id} is {election.state.value}; "
                "only launched elections can be ended",
                election_id=election_id,
                state=election.state.value
            )
        election.state = ElectionState.ENDED
        election.ended_at = utcnow()
        await self.database.save_election(election)
        logger.info(f"Election ended: id={election_id}")
        return election

    # Questions

    async def list_questions(self, ctx: RequestContext, election_id: int) -> List[Question]:
        election = await self._load(ctx, election_id)
        return election.questions

    async def get_question(self, ctx: RequestContext, election_id: int, question_id: int) -> Question:
        election = await self._load(ctx, election_id)
        return self._question(election, question_id)

    @tracked("add_question")
    async def add_question(
        self,
        ctx: RequestContext,
        election_id: int,
        title: str,
        description: str = ""
    ) -> Question:
        election = await self._load(ctx, election_id)
        self._require_draft(election, "add a question")
        question = election.add_question(
            _require_text(title, "title"),
            (description or "").strip()
        )
        await self.database.save_election(election)
        return question

    @tracked("edit_question")
    async def edit_question(
        self,
        ctx: RequestContext,
        election_id: int,
        question_id: int,
        title: str,
        description: str = ""
    ) -> Question:
        election = await self._load(ctx, election_id)
        self._require_draft(election, "edit a question")
        question = self._question(election, question_id)
        question.title = _require_text(title, "title")
        question.description = (description or "").strip()
        await self.database.save_election(election)
        return question

    @tracked("delete_question")
    async def delete_question(self, ctx: RequestContext, election_id: int, question_id: int) -> None:
        election = await self._load(ctx, election_id)
        self._require_draft(election, "delete a question")
        self._question(election, question_id)
        election.remove_question(question_id)
        await self.database.save_election(election)

    # Options

    async def list_options(self, ctx: RequestContext, election_id: int, question_id: int) -> List[Option]:
        election = await self._load(ctx, election_id)
        return self._question(election, question_id).options

    async def get_option(
        self,
        ctx: RequestContext,
        election_id: int,
        question_id: int,
        option_id: int
    ) -> Option:
        election = await self._load(ctx, election_id)
        question = self._question(election, question_id)
        return self._option(election, question, option_id)

    @tracked("add_option")
    async def add_option(self, ctx: RequestContext, election_id: int, question_id: int, value: str) -> Option:
        """Add an option. Identical labels within one question are allowed."""
        election = await self._load(ctx, election_id)
        self._require_draft(election, "add an option")
        question = self._question(election, question_id)
        option = question.add_option(_require_text(value, "option"))
        await self.database.save_election(election)
        return option

    @tracked("edit_option")
    async def edit_option(
        self,
        ctx: RequestContext,
        election_id: int,
        question_id: int,
        option_id: int,
        value: str
    ) -> Option:
        election = await self._load(ctx, election_id)
        self._require_draft(election, "edit an option")
        question = self._question(election, question_id)
        option = self._option(election, question, option_id)
        option.value = _require_text(value, "value")
        await self.database.save_election(election)
        return option

    @tracked("delete_option")
    async def delete_option(
        self,
        ctx: RequestContext,
        election_id: int,
        question_id: int,
        option_id: int
    ) -> None:
        election = await self._load(ctx, election_id)
        self._require_draft(election, "delete an option")
        question = self._question(election, question_id)
        self._option(election, question, option_id)
        question.remove_option(option_id)
        await self.database.save_election(election)

    # Ballots and results

    @tracked("cast_ballot")
    async def cast_ballot(self, election_id: int, voter_key: str, selections: Dict[int, int]) -> Ballot:
        """
        Record a voter's ballot in a launched election.

        Args:
            election_id: Target election
            voter_key: Voter credential; only its digest is stored
            selections: One option id for every question of the election

        Raises:
            NotFoundError: unknown election
            InvalidStateError: election is not launched
            ValidationError: selections do not match the ballot
            DuplicateBallotError: this voter already voted
        """
        election = await self.database.get_election(election_id)
        if election is None:
            raise NotFoundError(f"Election {election_id} not found", election_id=election_id)
        if election.state != ElectionState.LAUNCHED:
            raise InvalidStateError(
                f"Election {election_id} is not accepting ballots ({election.state.value})",
                election_id=election_id,
                state=election.state.value
            )
        voter_key = _require_text(voter_key, "voter_key")

        expected = {q.id for q in election.questions}
        if set(selections) != expected:
            raise ValidationError(
                "Ballot must answer every question exactly once",
                expected=sorted(expected),
                received=sorted(selections)
            )
        for question_id, option_id in selections.items():
            if election.find_question(question_id).find_option(option_id) is None:
                raise ValidationError(
                    f"Option {option_id} is not a choice of question {question_id}",
                    question_id=question_id,
                    option_id=option_id
                )

        ballot = Ballot(
            election_id=election_id,
            voter_digest=generate_voter_digest(voter_key, election_id),
            selections=dict(selections),
        )
        if not await self.database.record_ballot(ballot):
            raise DuplicateBallotError(
                f"A ballot was already cast with this voter key in election {election_id}",
                election_id=election_id
            )
        ballots_cast.inc()
        return ballot

    async def results(self, ctx: RequestContext, election_id: int) -> Dict[str, Any]:
        """Tally ballots per option, in question and option order."""
        election = await self._load(ctx, election_id)
        if election.state == ElectionState.DRAFT:
            raise InvalidStateError(
                f"Election {election_id} has not been launched",
                election_id=election_id,
                state=election.state.value
            )

        ballots = await self.database.list_ballots(election_id)
        counts: Dict[tuple, int] = {}
        for ballot in ballots:
            for question_id, option_id in ballot.selections.items():
                key = (question_id, option_id)
                counts[key] = counts.get(key, 0) + 1

        return {
            "election_id": election.id,
            "name": election.name,
            "state": election.state.value,
            "total_ballots": len(ballots),
            "questions": [
                {
                    "id": q.id,
                    "title": q.title,
                    "options": [
                        {"id": o.id, "value": o.value, "votes": counts.get((q.id, o.id), 0)}
                        for o in q.options
                    ],
                }
                for q in election.questions
            ],
        }
