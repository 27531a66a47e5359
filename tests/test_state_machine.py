from datetime import datetime, timezone

import pytest

from rewear.core.exceptions import ConflictError
from rewear.schemas.swap import (
    ItemSnapshot,
    Party,
    Role,
    STATUS_PROGRESS,
    Swap,
    SwapStatus,
)
from rewear.services import state_machine
from rewear.services.state_machine import (
    TERMINAL_STATUSES,
    TRANSITIONS,
    Transition,
    apply_transition,
    can_transition,
    drive,
    next_automatic_transition,
)

S = SwapStatus
NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_swap(status=S.PENDING) -> Swap:
    return Swap(
        swap_id="SW-1780000000000-abc123xyz",
        requester=Party(user_id="u1", username="alice", item=ItemSnapshot(item_id="i1", title="Jacket")),
        provider=Party(user_id="u2", username="bob", item=ItemSnapshot(item_id="i2", title="Sweater")),
        status=status,
        created_at=NOW,
        updated_at=NOW,
    )


def confirm(swap, field, role=None, **values):
    for r in ([role] if role else list(Role)):
        confirmations = swap.verification.confirmations_for(r)
        if field == "satisfaction_rating":
            confirmations.satisfaction_rating = values["rating"]
        else:
            getattr(confirmations, field).confirmed = True


class TestTransitionTable:
    def test_every_status_has_an_entry(self):
        assert set(TRANSITIONS) == set(SwapStatus)
        assert set(STATUS_PROGRESS) == set(SwapStatus)

    def test_terminal_statuses(self):
        assert TERMINAL_STATUSES == {S.DECLINED, S.COMPLETED, S.DISPUTED, S.CANCELLED}

    @pytest.mark.parametrize("status", [s for s in SwapStatus if s not in TERMINAL_STATUSES])
    def test_every_live_status_can_be_disputed(self, status):
        assert can_transition(status, S.DISPUTED)

    @pytest.mark.parametrize(
        "current,target",
        [
            (S.PENDING, S.COMPLETED),
            (S.ACCEPTED, S.IN_TRANSIT),
            (S.METHOD_SELECTED, S.CANCELLED),
            (S.CONFIRMED, S.PENDING),
            (S.DISPUTED, S.COMPLETED),
            (S.COMPLETED, S.DISPUTED),
        ],
    )
    def test_illegal_edges(self, current, target):
        assert not can_transition(current, target)


class TestApplyTransition:
    def test_appends_one_status_entry(self):
        swap = make_swap()
        apply_transition(swap, Transition(S.ACCEPTED, "Request accepted"), "u2", NOW)

        assert swap.status == S.ACCEPTED
        assert len(swap.timeline) == 1
        entry = swap.timeline[0]
        assert entry.event == "Status changed to accepted"
        assert entry.status == S.ACCEPTED
        assert entry.performed_by == "u2"
        assert entry.details == "Request accepted"
        assert entry.automatic is False

    def test_illegal_transition_raises_conflict_and_changes_nothing(self):
        swap = make_swap(S.DISPUTED)
        with pytest.raises(ConflictError):
            apply_transition(swap, Transition(S.COMPLETED), "u1", NOW)

        assert swap.status == S.DISPUTED
        assert swap.timeline == []

    def test_ensure_status(self):
        swap = make_swap(S.ACCEPTED)
        state_machine.ensure_status(swap, {S.ACCEPTED}, "select a method")
        with pytest.raises(ConflictError, match="while swap is accepted"):
            state_machine.ensure_status(swap, {S.PENDING}, "respond")


class TestAutomaticTransitions:
    def test_nothing_to_do_with_one_confirmation(self):
        swap = make_swap(S.METHOD_SELECTED)
        confirm(swap, "item_prepared", role=Role.REQUESTER)
        assert next_automatic_transition(swap) is None

    def test_both_prepared(self):
        swap = make_swap(S.METHOD_SELECTED)
        confirm(swap, "item_prepared")
        transition = next_automatic_transition(swap)
        assert transition.target == S.ITEMS_PREPARED
        assert transition.automatic is True

    def test_both_received_from_delivered(self):
        swap = make_swap(S.DELIVERED)
        confirm(swap, "item_received")
        assert next_automatic_transition(swap).target == S.CONFIRMED

    def test_drive_chains_to_completed_when_both_satisfied(self):
        swap = make_swap(S.IN_TRANSIT)
        confirm(swap, "item_received")
        confirm(swap, "satisfaction_rating", rating=4)

        applied = drive(swap, None, NOW)

        assert applied == 2
        assert swap.status == S.COMPLETED
        assert [entry.status for entry in swap.timeline] == [S.CONFIRMED, S.COMPLETED]
        assert all(entry.automatic and entry.performed_by is None for entry in swap.timeline)

    def test_drive_stops_at_confirmed_on_low_rating(self):
        swap = make_swap(S.IN_TRANSIT)
        confirm(swap, "item_received")
        confirm(swap, "satisfaction_rating", role=Role.REQUESTER, rating=5)
        confirm(swap, "satisfaction_rating", role=Role.PROVIDER, rating=2)

        assert drive(swap, "u1", NOW) == 1
        assert swap.status == S.CONFIRMED

    def test_disputed_swap_never_moves(self):
        swap = make_swap(S.DISPUTED)
        confirm(swap, "item_received")
        confirm(swap, "satisfaction_rating", rating=5)
        assert drive(swap, None, NOW) == 0

    def test_progress_follows_status(self):
        swap = make_swap(S.IN_TRANSIT)
        assert swap.progress_percentage == 70
        swap.status = S.DECLINED
        assert swap.progress_percentage == 0
