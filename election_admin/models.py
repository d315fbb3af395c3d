"""
Domain models for the election admin service.

This module contains:
- ElectionState: lifecycle states of an election
- Election, Question, Option: the owned election graph
- Admin, Ballot: accounts and cast ballots
- RequestContext: the authenticated caller passed into every lifecycle call
"""

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class ElectionState(str, Enum):
    """Lifecycle state of an election. Transitions only move forward."""
    DRAFT = "draft"
    LAUNCHED = "launched"
    ENDED = "ended"


def utcnow() -> datetime:
    """Current UTC time, timezone-aware."""
    return datetime.now(timezone.utc)


@dataclass
class RequestContext:
    """Identity of the authenticated admin making a request."""
    owner_id: int


@dataclass
class Admin:
    """An admin account that owns elections."""
    id: int
    name: str
    email: str
    password_hash: str
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class Option:
    """A selectable choice owned by a question."""
    id: int
    value: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "value": self.value}


@dataclass
class Question:
    """
    A ballot item owned by an election.

    Attributes:
        id: Identifier, unique within the parent election
        title: Question title
        description: Free text shown under the title
        options: Ordered options of this question
        next_option_id: Next option id to hand out; ids are never reused
    """
    id: int
    title: str
    description: str = ""
    options: List[Option] = field(default_factory=list)
    next_option_id: int = 1

    def find_option(self, option_id: int) -> Optional[Option]:
        for option in self.options:
            if option.id == option_id:
                return option
        return None

    def add_option(self, value: str) -> Option:
        option = Option(id=self.next_option_id, value=value)
        self.next_option_id += 1
        self.options.append(option)
        return option

    def remove_option(self, option_id: int) -> None:
        self.options = [o for o in self.options if o.id != option_id]

    def to_dict(self, include_options: bool = True) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
        }
        if include_options:
            data["options"] = [option.to_dict() for option in self.options]
        return data


@dataclass
class Election:
    """
    Top-level votable entity.

    The election exclusively owns its questions, and each question owns its
    options. Removing a parent removes its children.
    """
    id: Optional[int]
    name: str
    owner_id: int
    state: ElectionState = ElectionState.DRAFT
    questions: List[Question] = field(default_factory=list)
    next_question_id: int = 1
    created_at: datetime = field(default_factory=utcnow)
    launched_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None

    def find_question(self, question_id: int) -> Optional[Question]:
        for question in self.questions:
            if question.id == question_id:
                return question
        return None

    def add_question(self, title: str, description: str = "") -> Question:
        question = Question(
            id=self.next_question_id,
            title=title,
            description=description,
        )
        self.next_question_id += 1
        self.questions.append(question)
        return question

    def remove_question(self, question_id: int) -> None:
        # Options go with the question object.
        self.questions = [q for q in self.questions if q.id != question_id]

    def to_dict(self, include_questions: bool = False) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = {
            "id": self.id,
            "name": self.name,
            "owner_id": self.owner_id,
            "state": self.state.value,
            "question_count": len(self.questions),
            "created_at": self.created_at.isoformat(),
            "launched_at": self.launched_at.isoformat() if self.launched_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
        }
        if include_questions:
            data["questions"] = [q.to_dict() for q in self.questions]
        return data


@dataclass
class Ballot:
    """
    A ballot cast in a launched election.

    Attributes:
        election_id: Election the ballot belongs to
        voter_digest: SHA-256 of the voter key and election id
        selections: Mapping of question id to chosen option id
        cast_at: When the ballot was recorded
    """
    election_id: int
    voter_digest: str
    selections: Dict[int, int]
    cast_at: datetime = field(default_factory=utcnow)


def generate_voter_digest(voter_key: str, election_id: int) -> str:
    """
    Generate the SHA-256 digest identifying a voter within one election.

    The raw voter key is never stored; the digest is enough to detect a
    second ballot from the same voter.

    Args:
        voter_key: Voter-supplied credential
        election_id: Election the ballot targets

    Returns:
        str: Hexadecimal SHA-256 digest
    """
    combined = f"{voter_key.strip()}|{election_id}"
    return hashlib.sha256(combined.encode("utf-8")).hexdigest()
