"""
Bracket generation through the orchestrator: persistence, atomic replace, generation lock.
"""
from datetime import datetime, timedelta

import pytest
from sqlmodel import Session, func, select

from bracket_engine.models.bracket import BRACKET_GENERATED, Bracket
from bracket_engine.models.entrant import BracketEntrant
from bracket_engine.models.generation_lock import GenerationLock
from bracket_engine.models.match import MATCH_COMPLETED, STAGE_GROUP, STAGE_KNOCKOUT, Match
from bracket_engine.services import bracket_locks, bracket_orchestrator, bracket_store
from bracket_engine.services.bracket_errors import (
    BracketBusy,
    BracketNotFound,
    DuplicateGenerationInProgress,
    InsufficientParticipants,
    InvalidFormatParameters,
    MatchNotFound,
    UnsupportedFormat,
)
from tests.helpers import by_code, make_participants


def _count(session: Session, model) -> int:
    return session.exec(select(func.count()).select_from(model)).one()


def test_hybrid_32_players(session: Session):
    """8 groups of 4, group winners into an 8-player knockout."""
    bracket = bracket_orchestrator.generate_bracket(
        session, "t1", "singles", "hybrid", make_participants(32), group_size=4, advancers_per_group=1
    )
    view = bracket_orchestrator.load_bracket_view(session, "t1", "singles")
    matches = bracket_store.list_matches(session, bracket.id)

    assert bracket.status == BRACKET_GENERATED
    assert bracket.group_count == 8
    assert bracket.bracket_size == 8
    assert len([m for m in matches if m.stage == STAGE_GROUP]) == 48
    assert [r.name for r in view.rounds] == ["Group Stage", "Quarter-Final", "Semi-Final", "Final"]

    first_knockout = [m for m in matches if m.stage == STAGE_KNOCKOUT and m.round_ordinal == 2]
    entrants = {(m.source_of(side).source_ref, m.source_of(side).rank) for m in first_knockout for side in "AB"}
    assert len(entrants) == 8

    groups = {e.group_id for e in bracket_store.list_entrants(session, bracket.id)}
    assert groups == {"A", "B", "C", "D", "E", "F", "G", "H"}


def test_match_numbers_unique_and_contiguous(session: Session):
    bracket = bracket_orchestrator.generate_bracket(session, "t1", "singles", "double_elimination", make_participants(8))
    numbers = [m.match_number for m in bracket_store.list_matches(session, bracket.id)]

    assert sorted(numbers) == list(range(1, 16))


def test_single_elimination_five_players_auto_advances_byes(session: Session):
    bracket = bracket_orchestrator.generate_bracket(session, "t1", "singles", "single_elimination", make_participants(5))
    first_round = [m for m in bracket_store.list_matches(session, bracket.id) if m.round_ordinal == 1]

    byes = [m for m in first_round if m.is_bye_match()]
    assert len(byes) == 3
    assert all(m.status == MATCH_COMPLETED for m in byes)
    assert sorted(m.winner_id() for m in byes) == ["p01", "p02", "p03"]
    assert len([m for m in first_round if not m.is_bye_match()]) == 1


def test_entrant_snapshot_and_rating_range(session: Session):
    bracket = bracket_orchestrator.generate_bracket(session, "t1", "singles", "swiss_system", make_participants(6))
    entrants = bracket_store.list_entrants(session, bracket.id)

    assert [e.seed for e in entrants] == [1, 2, 3, 4, 5, 6]
    assert entrants[0].participant_id == "p01"
    assert bracket.rating_max == 2000.0
    assert bracket.rating_min == 1950.0
    assert bracket.swiss_total_rounds == 3
    # Only round 1 exists until it is finished
    assert {m.round_ordinal for m in bracket_store.list_matches(session, bracket.id)} == {1}


def test_generating_twice_leaves_one_bracket(session: Session):
    first = bracket_orchestrator.generate_bracket(session, "t1", "singles", "single_elimination", make_participants(8))
    first_id = first.id
    second = bracket_orchestrator.generate_bracket(session, "t1", "singles", "round_robin", make_participants(6))

    assert _count(session, Bracket) == 1
    assert second.format == "round_robin"
    assert _count(session, Match) == 15
    assert _count(session, BracketEntrant) == 6
    assert session.exec(select(Match).where(Match.bracket_id == first_id)).first() is None


def test_other_event_untouched_by_regeneration(session: Session):
    bracket_orchestrator.generate_bracket(session, "t1", "singles", "single_elimination", make_participants(8))
    bracket_orchestrator.generate_bracket(session, "t1", "doubles", "single_elimination", make_participants(4))
    bracket_orchestrator.generate_bracket(session, "t1", "singles", "single_elimination", make_participants(4))

    assert _count(session, Bracket) == 2
    assert bracket_store.get_bracket(session, "t1", "doubles") is not None


def test_invalid_parameters_persist_nothing(session: Session):
    with pytest.raises(InvalidFormatParameters):
        bracket_orchestrator.generate_bracket(
            session, "t1", "singles", "hybrid", make_participants(16), group_size=4, advancers_per_group=4
        )

    assert _count(session, Bracket) == 0
    assert _count(session, Match) == 0
    assert _count(session, GenerationLock) == 0


def test_failed_regeneration_keeps_previous_bracket(session: Session):
    original = bracket_orchestrator.generate_bracket(session, "t1", "singles", "single_elimination", make_participants(8))
    original_id = original.id

    with pytest.raises(InsufficientParticipants):
        bracket_orchestrator.generate_bracket(session, "t1", "singles", "single_elimination", make_participants(3))
    with pytest.raises(UnsupportedFormat):
        bracket_orchestrator.generate_bracket(session, "t1", "singles", "ladder", make_participants(8))

    assert bracket_store.require_bracket(session, "t1", "singles").id == original_id


def test_held_generation_lock_blocks_generation(session: Session):
    session.add(GenerationLock(tournament_id="t1", event_type="singles", owner="other-worker"))
    session.commit()

    with pytest.raises(DuplicateGenerationInProgress) as exc_info:
        bracket_orchestrator.generate_bracket(session, "t1", "singles", "single_elimination", make_participants(8))

    assert str(exc_info.value).startswith("DUPLICATE_GENERATION_IN_PROGRESS:")
    assert _count(session, Bracket) == 0


def test_stale_generation_lock_is_taken_over(session: Session):
    session.add(
        GenerationLock(
            tournament_id="t1",
            event_type="singles",
            owner="crashed-worker",
            acquired_at=datetime.utcnow() - timedelta(hours=1),
        )
    )
    session.commit()

    bracket = bracket_orchestrator.generate_bracket(session, "t1", "singles", "single_elimination", make_participants(8))

    assert bracket.id is not None
    assert _count(session, GenerationLock) == 0


def test_lock_released_after_generation(session: Session):
    bracket_orchestrator.generate_bracket(session, "t1", "singles", "single_elimination", make_participants(8))

    assert _count(session, GenerationLock) == 0


def test_regenerated_bracket_never_reuses_ids(session: Session):
    first = bracket_orchestrator.generate_bracket(session, "t1", "singles", "single_elimination", make_participants(8))
    first_id = first.id
    old_matches = bracket_store.list_matches(session, first_id)
    old_match_ids = {m.id for m in old_matches}
    stale_match_id = by_code(old_matches)["KO1-1"].id

    second = bracket_orchestrator.regenerate_bracket(session, "t1", "singles", participants=make_participants(6))

    assert second.id != first_id
    new_ids = {m.id for m in bracket_store.list_matches(session, second.id)}
    assert min(new_ids) > max(old_match_ids)
    with pytest.raises(MatchNotFound):
        bracket_orchestrator.record_match_result(session, stale_match_id, score_a=3, score_b=1)


def test_replace_drops_resolution_lock_of_old_bracket(session: Session):
    first = bracket_orchestrator.generate_bracket(session, "t1", "singles", "single_elimination", make_participants(8))
    first_id = first.id
    with bracket_locks.resolution_lock(first_id):
        pass
    assert first_id in bracket_locks._resolution_locks

    second = bracket_orchestrator.regenerate_bracket(session, "t1", "singles")

    assert first_id not in bracket_locks._resolution_locks
    assert second.id != first_id


def test_replace_waits_for_result_in_progress(session: Session, monkeypatch):
    first = bracket_orchestrator.generate_bracket(session, "t1", "singles", "single_elimination", make_participants(8))
    first_id = first.id
    monkeypatch.setattr(bracket_locks, "RESOLUTION_LOCK_TIMEOUT_SECONDS", 0.05)

    with bracket_locks.resolution_lock(first_id):
        with pytest.raises(BracketBusy):
            bracket_orchestrator.regenerate_bracket(session, "t1", "singles", bracket_format="round_robin")

    assert bracket_store.require_bracket(session, "t1", "singles").id == first_id
    assert _count(session, GenerationLock) == 0


def test_regenerate_reuses_format_and_entrants(session: Session):
    bracket_orchestrator.generate_bracket(
        session, "t1", "singles", "hybrid", make_participants(12), group_size=4, advancers_per_group=2, name="Club Open"
    )

    bracket = bracket_orchestrator.regenerate_bracket(session, "t1", "singles")

    assert bracket.format == "hybrid"
    assert bracket.name == "Club Open"
    assert bracket.group_size == 4
    assert bracket.advancers_per_group == 2
    assert bracket.participant_count == 12
    assert _count(session, Bracket) == 1


def test_regenerate_with_new_format(session: Session):
    bracket_orchestrator.generate_bracket(session, "t1", "singles", "round_robin", make_participants(6))

    bracket = bracket_orchestrator.regenerate_bracket(session, "t1", "singles", bracket_format="double_elimination")

    assert bracket.format == "double_elimination"
    assert bracket.group_size is None
    assert bracket.participant_count == 6


def test_regenerate_without_bracket_or_participants(session: Session):
    with pytest.raises(BracketNotFound):
        bracket_orchestrator.regenerate_bracket(session, "t1", "singles")


def test_delete_bracket(session: Session):
    bracket = bracket_orchestrator.generate_bracket(session, "t1", "singles", "single_elimination", make_participants(4))

    assert bracket_orchestrator.delete_bracket(session, "t1", "singles") == bracket.id
    assert _count(session, Bracket) == 0
    assert _count(session, Match) == 0
    with pytest.raises(BracketNotFound):
        bracket_orchestrator.delete_bracket(session, "t1", "singles")
