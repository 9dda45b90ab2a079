import asyncio
from types import SimpleNamespace

import pytest

from giveaway_bot.models import (
    DAY_MS,
    Giveaway,
    GiveawayStatus,
    MemberInfo,
    UserInfo,
    now_ms,
)
from giveaway_bot.views import EnterView

GUILD_ID = 444444444444444444
CHANNEL_ID = 555555555555555555
ROLE_ID = 222222222222222222
MANAGER_ROLE_ID = 111111111111111111


async def start(manager, **overrides):
    values = dict(
        guild_id=GUILD_ID,
        channel_id=CHANNEL_ID,
        prize="Nitro",
        winners=1,
        duration="30m",
    )
    values.update(overrides)
    return await manager.create_giveaway(**values)


async def wait_until_ended(store, giveaway_id):
    for _ in range(200):
        giveaway = await store.get_giveaway(giveaway_id)
        if not giveaway.is_active:
            return giveaway
        await asyncio.sleep(0.01)
    raise AssertionError(f"giveaway {giveaway_id} never ended")


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_persists_arms_timer_and_announces(self, manager, store, messenger):
        before = now_ms()
        giveaway = await start(manager)

        assert giveaway.id in manager.timers
        assert before + 1_800_000 <= giveaway.end_at <= now_ms() + 1_800_000
        loaded = await store.get_giveaway(giveaway.id)
        assert loaded.status is GiveawayStatus.ACTIVE
        assert loaded.message_id == 999888777666555444

        posted, view = messenger.post_announcement.await_args.args
        assert posted.id == giveaway.id
        assert isinstance(view, EnterView)
        messenger.notify_logger.assert_awaited()

    @pytest.mark.asyncio
    async def test_failed_announcement_keeps_giveaway_active(self, manager, store, messenger):
        messenger.post_announcement.return_value = None
        giveaway = await start(manager)
        loaded = await store.get_giveaway(giveaway.id)
        assert loaded.is_active
        assert loaded.message_id is None
        assert giveaway.id in manager.timers

    @pytest.mark.asyncio
    async def test_end_past_latest_datetime_rejected_before_writing(
        self, manager, store, messenger
    ):
        with pytest.raises(ValueError, match="Duration is too long."):
            await start(manager, duration="10000y")
        assert await store.list_active() == []
        assert len(manager.timers) == 0
        messenger.post_announcement.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_duration_within_datetime_range_accepted(self, manager, store):
        giveaway = await start(manager, duration="7000y")
        assert (await store.get_giveaway(giveaway.id)).is_active

    @pytest.mark.asyncio
    async def test_age_defaults_come_from_config(self, manager, config):
        config.defaults.min_server_age_days = 3
        config.defaults.min_account_age_days = 14
        giveaway = await start(manager)
        assert giveaway.min_server_age_days == 3
        assert giveaway.min_account_age_days == 14

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides",
        [
            {"winners": 0},
            {"duration": "30s"},
            {"duration": "soon"},
            {"duration": ""},
            {"min_server_age_days": -1},
            {"min_account_age_days": -5},
        ],
    )
    async def test_invalid_input_rejected_before_writing(self, manager, store, messenger, overrides):
        with pytest.raises(ValueError):
            await start(manager, **overrides)
        assert await store.list_active() == []
        assert len(manager.timers) == 0
        messenger.post_announcement.assert_not_awaited()


class TestEnter:
    @pytest.mark.asyncio
    async def test_enter_and_duplicate(self, manager, store):
        giveaway = await start(manager)
        assert (await manager.enter(giveaway.id, 1)).status == "entered"
        assert (await manager.enter(giveaway.id, 1)).status == "already_entered"
        assert await store.count_entries(giveaway.id) == 1

    @pytest.mark.asyncio
    async def test_unknown_giveaway(self, manager):
        assert (await manager.enter(404, 1)).status == "not_found"

    @pytest.mark.asyncio
    async def test_ended_giveaway(self, manager):
        giveaway = await start(manager)
        await manager.end_giveaway(giveaway.id)
        result = await manager.enter(giveaway.id, 1)
        assert result.status == "inactive"
        assert not result.ok

    @pytest.mark.asyncio
    async def test_young_account_rejected_without_entry(self, manager, store, messenger):
        messenger.fetch_user.return_value = UserInfo(created_at=now_ms() - 10 * DAY_MS)
        giveaway = await start(manager, min_account_age_days=30)

        result = await manager.enter(giveaway.id, 1)

        assert result.status == "too_new_account"
        assert await store.count_entries(giveaway.id) == 0
        messenger.fetch_member.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_required_role_checked_against_member(self, manager, messenger):
        giveaway = await start(manager, required_role_id=ROLE_ID)
        messenger.fetch_member.return_value = MemberInfo(
            role_ids=frozenset({1}), joined_at=now_ms() - DAY_MS
        )
        assert (await manager.enter(giveaway.id, 1)).status == "missing_role"

        messenger.fetch_member.return_value = MemberInfo(
            role_ids=frozenset({ROLE_ID}), joined_at=now_ms() - DAY_MS
        )
        assert (await manager.enter(giveaway.id, 1)).status == "entered"
        messenger.fetch_member.assert_awaited_with(GUILD_ID, 1)

    @pytest.mark.asyncio
    async def test_server_age_rejection(self, manager, messenger):
        giveaway = await start(manager, min_server_age_days=7)
        messenger.fetch_member.return_value = MemberInfo(
            role_ids=frozenset(), joined_at=now_ms() - DAY_MS
        )
        assert (await manager.enter(giveaway.id, 1)).status == "too_new_to_server"

    @pytest.mark.asyncio
    async def test_unconstrained_entry_skips_discord_lookups(self, manager, messenger):
        giveaway = await start(manager)
        await manager.enter(giveaway.id, 1)
        messenger.fetch_member.assert_not_awaited()
        messenger.fetch_user.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_concurrent_enters_record_one_entry(self, manager, store):
        giveaway = await start(manager)
        results = await asyncio.gather(*(manager.enter(giveaway.id, 7) for _ in range(5)))
        statuses = [result.status for result in results]
        assert statuses.count("entered") == 1
        assert statuses.count("already_entered") == 4
        assert await store.count_entries(giveaway.id) == 1


class TestFinalize:
    @pytest.mark.asyncio
    async def test_two_entrants_one_winner(self, manager, store, messenger):
        giveaway = await start(manager)
        await manager.enter(giveaway.id, 1)
        await manager.enter(giveaway.id, 2)

        result = await manager.end_giveaway(giveaway.id)

        assert result.status == "ended"
        assert result.reason is None
        assert len(result.winners) == 1
        assert result.winners[0] in {1, 2}
        assert (await store.get_giveaway(giveaway.id)).status is GiveawayStatus.ENDED
        assert [w.user_id for w in await store.list_winners(giveaway.id)] == result.winners
        assert giveaway.id not in manager.timers

        channel_id, text = messenger.send_notice.await_args.args
        assert channel_id == CHANNEL_ID
        assert f"<@{result.winners[0]}>" in text
        messenger.close_announcement.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_no_entries(self, manager, store, messenger):
        giveaway = await start(manager)
        result = await manager.end_giveaway(giveaway.id)

        assert result.status == "ended"
        assert result.winners == []
        assert result.reason == "no_entries"
        assert (await store.get_giveaway(giveaway.id)).status is GiveawayStatus.ENDED
        _, text = messenger.send_notice.await_args.args
        assert text == f"No valid entries for **Nitro** (ID {giveaway.id})."

    @pytest.mark.asyncio
    async def test_fewer_entrants_than_winners(self, manager):
        giveaway = await start(manager, winners=5)
        for user_id in (1, 2, 3):
            await manager.enter(giveaway.id, user_id)
        result = await manager.end_giveaway(giveaway.id)
        assert sorted(result.winners) == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_finalize_is_idempotent(self, manager, store, messenger):
        giveaway = await start(manager)
        await manager.enter(giveaway.id, 1)
        first = await manager.end_giveaway(giveaway.id)
        second = await manager.end_giveaway(giveaway.id)

        assert first.status == "ended"
        assert second.status == "already_ended"
        assert len(await store.list_winners(giveaway.id)) == 1
        assert messenger.send_notice.await_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_finalize_ends_once(self, manager, store, messenger):
        giveaway = await start(manager, winners=2)
        for user_id in range(1, 6):
            await manager.enter(giveaway.id, user_id)

        results = await asyncio.gather(
            manager.end_giveaway(giveaway.id), manager.end_giveaway(giveaway.id)
        )

        assert sorted(result.status for result in results) == ["already_ended", "ended"]
        assert len(await store.list_winners(giveaway.id)) == 2
        assert messenger.send_notice.await_count == 1

    @pytest.mark.asyncio
    async def test_unknown_giveaway(self, manager):
        assert (await manager.end_giveaway(404)).status == "not_found"

    @pytest.mark.asyncio
    async def test_notice_failure_does_not_block_ending(self, manager, store, messenger):
        messenger.send_notice.return_value = False
        giveaway = await start(manager)
        await manager.enter(giveaway.id, 1)
        result = await manager.end_giveaway(giveaway.id)
        assert result.status == "ended"
        assert result.winners == [1]

    @pytest.mark.asyncio
    async def test_announcement_error_after_commit_still_reports_ended(
        self, manager, store, messenger
    ):
        messenger.send_notice.side_effect = RuntimeError("channel lookup failed")
        giveaway = await start(manager)
        await manager.enter(giveaway.id, 1)

        result = await manager.end_giveaway(giveaway.id)

        assert result.status == "ended"
        assert result.winners == [1]
        assert (await store.get_giveaway(giveaway.id)).status is GiveawayStatus.ENDED
        assert giveaway.id not in manager.timers
        assert (await manager.end_giveaway(giveaway.id)).status == "already_ended"

    @pytest.mark.asyncio
    async def test_announcement_error_with_no_entries(self, manager, messenger):
        messenger.close_announcement.side_effect = RuntimeError("edit failed")
        giveaway = await start(manager)

        result = await manager.end_giveaway(giveaway.id)

        assert result.status == "ended"
        assert result.reason == "no_entries"


class TestReroll:
    @pytest.mark.asyncio
    async def test_reroll_draws_from_non_winners(self, manager, store):
        giveaway = await start(manager)
        for user_id in range(1, 6):
            await manager.enter(giveaway.id, user_id)
        await store.insert_winners(giveaway.id, [3])
        await store.set_winner_notified(giveaway.id, 3)

        result = await manager.reroll(giveaway.id, 2)

        assert result.status == "ended"
        assert len(result.winners) == 2
        assert 3 not in result.winners
        assert set(result.winners) <= {1, 2, 4, 5}
        winners = {w.user_id: w.notified for w in await store.list_winners(giveaway.id)}
        assert winners.pop(3) is True
        assert set(winners) == set(result.winners)

    @pytest.mark.asyncio
    async def test_reroll_on_ended_giveaway_is_rejected(self, manager, store):
        giveaway = await start(manager)
        await manager.enter(giveaway.id, 1)
        await manager.enter(giveaway.id, 2)
        ended = await manager.end_giveaway(giveaway.id)

        result = await manager.reroll(giveaway.id, 1)

        assert result.status == "already_ended"
        assert [w.user_id for w in await store.list_winners(giveaway.id)] == ended.winners

    @pytest.mark.asyncio
    async def test_reroll_count_must_be_positive(self, manager):
        giveaway = await start(manager)
        with pytest.raises(ValueError):
            await manager.reroll(giveaway.id, 0)


class TestCorrections:
    @pytest.mark.asyncio
    async def test_remove_entry_with_and_without_purge(self, manager, store):
        giveaway = await start(manager)
        for user_id in (1, 2):
            await manager.enter(giveaway.id, user_id)
        await store.insert_winners(giveaway.id, [1, 2])

        assert await manager.remove_entry(giveaway.id, 1, purge_winner=True) == (1, 1)
        assert await manager.remove_entry(giveaway.id, 2) == (1, None)

        assert await store.count_entries(giveaway.id) == 0
        assert [w.user_id for w in await store.list_winners(giveaway.id)] == [2]

    @pytest.mark.asyncio
    async def test_remove_missing_entry(self, manager):
        giveaway = await start(manager)
        assert await manager.remove_entry(giveaway.id, 99, purge_winner=True) == (0, 0)

    @pytest.mark.asyncio
    async def test_mark_gifted(self, manager, store, messenger):
        giveaway = await start(manager)
        await manager.enter(giveaway.id, 1)
        await manager.end_giveaway(giveaway.id)
        messenger.notify_logger.reset_mock()

        assert await manager.mark_gifted(giveaway.id, 1) is True
        assert (await store.list_winners(giveaway.id))[0].notified is True
        messenger.notify_logger.assert_awaited_once()

        assert await manager.mark_gifted(giveaway.id, 2) is False


class TestTimers:
    @pytest.mark.asyncio
    async def test_restore_rearms_active_giveaways(self, manager, store, messenger):
        now = now_ms()
        overdue = await store.insert_giveaway(
            Giveaway(
                guild_id=GUILD_ID,
                channel_id=CHANNEL_ID,
                prize="Overdue",
                winners_count=1,
                started_at=now - 120_000,
                end_at=now - 1_000,
                message_id=123123123123123123,
            )
        )
        pending = await store.insert_giveaway(
            Giveaway(
                guild_id=GUILD_ID,
                channel_id=CHANNEL_ID,
                prize="Pending",
                winners_count=1,
                started_at=now,
                end_at=now + 3_600_000,
            )
        )
        await store.insert_entry_if_absent(overdue.id, 1, now - 60_000)

        assert await manager.restore_active_giveaways() == 2
        assert pending.id in manager.timers
        messenger.register_view.assert_called_once()
        view, message_id = messenger.register_view.call_args.args
        assert isinstance(view, EnterView)
        assert message_id == 123123123123123123

        ended = await wait_until_ended(store, overdue.id)
        assert ended.status is GiveawayStatus.ENDED
        assert [w.user_id for w in await store.list_winners(overdue.id)] == [1]
        assert (await store.get_giveaway(pending.id)).is_active

    @pytest.mark.asyncio
    async def test_manual_end_cancels_timer(self, manager):
        giveaway = await start(manager)
        assert giveaway.id in manager.timers
        await manager.end_giveaway(giveaway.id)
        assert giveaway.id not in manager.timers


class TestIsAdmin:
    def make_member(self, *, member_id=1, owner_id=2, administrator=False, manage_guild=False, roles=()):
        return SimpleNamespace(
            id=member_id,
            guild=SimpleNamespace(owner_id=owner_id),
            guild_permissions=SimpleNamespace(
                administrator=administrator, manage_guild=manage_guild
            ),
            roles=[SimpleNamespace(id=role_id) for role_id in roles],
        )

    @pytest.mark.asyncio
    async def test_guild_owner(self, manager):
        assert manager.is_admin(self.make_member(member_id=5, owner_id=5))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("flag", ["administrator", "manage_guild"])
    async def test_manage_permissions(self, manager, flag):
        assert manager.is_admin(self.make_member(**{flag: True}))

    @pytest.mark.asyncio
    async def test_manager_role(self, manager):
        assert manager.is_admin(self.make_member(roles=[MANAGER_ROLE_ID]))

    @pytest.mark.asyncio
    async def test_plain_member_denied(self, manager):
        assert not manager.is_admin(self.make_member(roles=[999]))

    @pytest.mark.asyncio
    async def test_no_manager_roles_configured(self, manager, config):
        config.permissions.manager_roles = []
        assert not manager.is_admin(self.make_member(roles=[MANAGER_ROLE_ID]))
