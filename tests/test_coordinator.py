#!/usr/bin/env python3
"""
Tests for AgentCoordinator: registration, visibility and messaging rules
"""

import asyncio
from datetime import timedelta

import pytest

from app.coordinator import INBOX_NOTIFICATION
from app.models import Agent, AgentStatus, Message, StatusSource
from conftest import ALICE_ID, BOB_ID, COMPANION_ID, DAVE_ID, SHELL_ID


async def register_all(coordinator, *agent_ids):
    for agent_id in agent_ids:
        assert await coordinator.register_agent(agent_id)


# Registration


@pytest.mark.asyncio
async def test_register_unknown_agent_fails(coordinator):
    assert await coordinator.register_agent("nobody") is False


@pytest.mark.asyncio
async def test_register_creates_session(coordinator, directory):
    assert await coordinator.register_agent(ALICE_ID) is True

    assert directory.agents[ALICE_ID].registered is True
    session = await coordinator.get_session_for_agent(ALICE_ID)
    assert session is not None
    assert session.agent_id == ALICE_ID


@pytest.mark.asyncio
async def test_register_by_name(coordinator, directory):
    assert await coordinator.register_agent("Alice") is True
    assert directory.agents[ALICE_ID].registered is True


@pytest.mark.asyncio
async def test_reregister_keeps_session(coordinator):
    await coordinator.register_agent(ALICE_ID)
    first = await coordinator.get_session_for_agent(ALICE_ID)

    assert await coordinator.register_agent(ALICE_ID) is True

    second = await coordinator.get_session_for_agent(ALICE_ID)
    assert second.session_id == first.session_id
    assert len(await coordinator.session_manager.list_sessions()) == 1


@pytest.mark.asyncio
async def test_reregister_records_session_id(coordinator, directory):
    await coordinator.register_agent(ALICE_ID, session_id="conv-1")
    await coordinator.register_agent(ALICE_ID, session_id="conv-2")

    assert directory.agents[ALICE_ID].session_id == "conv-2"


@pytest.mark.asyncio
async def test_concurrent_registration_single_session(coordinator):
    results = await asyncio.gather(*(coordinator.register_agent(ALICE_ID) for _ in range(5)))

    assert all(results)
    sessions = await coordinator.session_manager.list_sessions()
    assert [s.agent_id for s in sessions] == [ALICE_ID]


@pytest.mark.asyncio
async def test_unregister_drops_session(coordinator, directory):
    await coordinator.register_agent(ALICE_ID)

    assert await coordinator.unregister_agent(ALICE_ID) is True

    assert directory.agents[ALICE_ID].registered is False
    assert await coordinator.get_session_for_agent(ALICE_ID) is None
    assert await coordinator.unregister_agent(ALICE_ID) is True
    assert await coordinator.unregister_agent("nobody") is False


# Lookup and listing


@pytest.mark.asyncio
async def test_find_agent_prefers_id_then_name(coordinator):
    assert (await coordinator.find_agent(BOB_ID.upper())).id == BOB_ID
    assert (await coordinator.find_agent("BOB")).id == BOB_ID
    assert await coordinator.find_agent("nobody") is None


@pytest.mark.asyncio
async def test_resolve_agent_id_returns_record_key(coordinator, directory):
    upper_id = "E11E0000-0000-4000-8000-0000000000AA"
    directory.add_workspace("gamma", [Agent(id=upper_id, name="ellie")])

    assert await coordinator.resolve_agent_id(upper_id.lower()) == upper_id
    assert await coordinator.resolve_agent_id(BOB_ID.upper()) == BOB_ID
    assert await coordinator.resolve_agent_id("bob") is None


@pytest.mark.asyncio
async def test_find_agent_in_workspace(coordinator):
    assert (await coordinator.find_agent_in_workspace(ALICE_ID, "bob")).id == BOB_ID
    assert await coordinator.find_agent_in_workspace(ALICE_ID, "dave") is None


@pytest.mark.asyncio
async def test_list_agents_scoped_to_workspace(coordinator):
    names = {info.name for info in await coordinator.list_agents(ALICE_ID)}

    # shell agents are hidden, companions only show up for their owner
    assert names == {"alice", "bob", "helper"}


@pytest.mark.asyncio
async def test_list_agents_hides_foreign_companion(coordinator):
    names = {info.name for info in await coordinator.list_agents(BOB_ID)}
    assert names == {"alice", "bob"}


@pytest.mark.asyncio
async def test_list_agents_unknown_caller(coordinator):
    assert await coordinator.list_agents("nobody") == []


@pytest.mark.asyncio
async def test_list_agents_reports_registration(coordinator):
    await coordinator.register_agent(BOB_ID)

    infos = {info.name: info for info in await coordinator.list_agents(DAVE_ID)}
    assert list(infos) == ["dave"]
    infos = {info.name: info for info in await coordinator.list_agents(ALICE_ID)}
    assert infos["bob"].is_registered is True
    assert infos["alice"].is_registered is False
    assert infos["bob"].status == "idle"


# Messaging


@pytest.mark.asyncio
async def test_send_and_check_round_trip(coordinator, directory):
    await register_all(coordinator, ALICE_ID, BOB_ID)

    assert await coordinator.send_message(ALICE_ID, "bob", "hi") is None

    assert directory.injected_text == [(BOB_ID, INBOX_NOTIFICATION)]
    messages = await coordinator.check_messages(BOB_ID)
    assert [(m.sender, m.content) for m in messages] == [(ALICE_ID, "hi")]
    assert await coordinator.check_messages(BOB_ID) == []


@pytest.mark.asyncio
async def test_send_to_running_agent_skips_notification(coordinator, directory):
    await register_all(coordinator, ALICE_ID, BOB_ID)
    await coordinator.update_agent_status(BOB_ID, AgentStatus.RUNNING)

    assert await coordinator.send_message(ALICE_ID, BOB_ID, "later") is None

    assert directory.injected_text == []
    assert await coordinator.has_unread_messages(BOB_ID) is True


@pytest.mark.asyncio
async def test_send_from_unregistered_sender(coordinator):
    await coordinator.register_agent(BOB_ID)

    assert await coordinator.send_message(ALICE_ID, BOB_ID, "hi") == "Sender not registered"
    assert await coordinator.send_message("nobody", BOB_ID, "hi") == "Sender not found"
    assert await coordinator.unread_count(BOB_ID) == 0


@pytest.mark.asyncio
async def test_send_across_workspaces_rejected(coordinator):
    await register_all(coordinator, ALICE_ID, DAVE_ID)

    assert await coordinator.send_message(ALICE_ID, "dave", "hi") == "Recipient not found"
    assert await coordinator.send_message(ALICE_ID, DAVE_ID, "hi") == "Recipient not found"
    assert await coordinator.unread_count(DAVE_ID) == 0


@pytest.mark.asyncio
async def test_send_to_shell_rejected(coordinator):
    await coordinator.register_agent(ALICE_ID)

    error = await coordinator.send_message(ALICE_ID, SHELL_ID, "ls")
    assert error == "Cannot send messages to shell agents"


@pytest.mark.asyncio
async def test_companion_messaging_rules(coordinator):
    await register_all(coordinator, ALICE_ID, BOB_ID, COMPANION_ID)

    assert await coordinator.send_message(ALICE_ID, "helper", "task") is None
    assert await coordinator.send_message(COMPANION_ID, ALICE_ID, "done") is None
    assert (
        await coordinator.send_message(BOB_ID, "helper", "hey")
        == "Only the owner can send messages to a companion agent"
    )
    assert (
        await coordinator.send_message(COMPANION_ID, BOB_ID, "hey")
        == "Companion agents can only send messages to their owner"
    )


@pytest.mark.asyncio
async def test_check_messages_without_marking(coordinator):
    await register_all(coordinator, ALICE_ID, BOB_ID)
    await coordinator.send_message(ALICE_ID, BOB_ID, "hi")

    assert len(await coordinator.check_messages(BOB_ID, mark_as_read=False)) == 1
    assert len(await coordinator.check_messages(BOB_ID)) == 1
    assert await coordinator.latest_unread_message_id(BOB_ID) is None


@pytest.mark.asyncio
async def test_check_messages_unknown_agent(coordinator):
    assert await coordinator.check_messages("nobody") == []


@pytest.mark.asyncio
async def test_broadcast_reaches_registered_workspace_members(coordinator, directory):
    await register_all(coordinator, ALICE_ID, BOB_ID, COMPANION_ID, DAVE_ID)

    count = await coordinator.broadcast_message(ALICE_ID, "standup")

    assert count == 2
    assert sorted(agent_id for agent_id, _ in directory.injected_text) == sorted(
        [BOB_ID, COMPANION_ID]
    )
    assert await coordinator.unread_count(DAVE_ID) == 0
    assert await coordinator.unread_count(ALICE_ID) == 0


@pytest.mark.asyncio
async def test_broadcast_skips_unregistered(coordinator):
    await coordinator.register_agent(ALICE_ID)

    assert await coordinator.broadcast_message(ALICE_ID, "anyone?") == 0
    assert await coordinator.broadcast_message(BOB_ID, "not registered") == 0


@pytest.mark.asyncio
async def test_broadcast_from_companion_only_reaches_owner(coordinator):
    await register_all(coordinator, ALICE_ID, BOB_ID, COMPANION_ID)

    assert await coordinator.broadcast_message(COMPANION_ID, "status") == 1
    assert await coordinator.unread_count(ALICE_ID) == 1
    assert await coordinator.unread_count(BOB_ID) == 0


# Hook driven updates


@pytest.mark.asyncio
async def test_update_status_touches_session(coordinator, directory):
    await coordinator.register_agent(ALICE_ID)
    session = await coordinator.get_session_for_agent(ALICE_ID)
    session.last_activity -= timedelta(minutes=10)
    before = session.last_activity

    await coordinator.update_agent_status(ALICE_ID, AgentStatus.RUNNING, StatusSource.HOOK)

    assert directory.agents[ALICE_ID].status == AgentStatus.RUNNING
    assert session.last_activity > before


@pytest.mark.asyncio
async def test_update_metadata_merges(coordinator, directory):
    await coordinator.update_metadata(ALICE_ID, {"cwd": "/src/alice"})
    await coordinator.update_metadata(ALICE_ID, {"model": "opus"})
    await coordinator.update_metadata(ALICE_ID, {})

    assert directory.agents[ALICE_ID].metadata == {"cwd": "/src/alice", "model": "opus"}


# Agent lifecycle


@pytest.mark.asyncio
async def test_create_agent_in_existing_folder(coordinator, directory, tmp_path):
    result = await coordinator.create_agent(
        name="carol", agent_type="claude", repo_path=str(tmp_path), created_by=ALICE_ID
    )

    assert result.success is True
    created = directory.agents[result.agent_id]
    assert created.folder == str(tmp_path)
    assert directory.workspace_of(result.agent_id).name == "alpha"


@pytest.mark.asyncio
async def test_create_agent_missing_folder(coordinator, tmp_path):
    result = await coordinator.create_agent(
        name="carol", agent_type="claude", repo_path=str(tmp_path / "missing")
    )

    assert result.success is False
    assert "Folder not found" in result.message


@pytest.mark.asyncio
async def test_create_agent_with_worktree(coordinator, directory, repo_provider, tmp_path):
    result = await coordinator.create_agent(
        name="feature",
        agent_type="codex",
        repo_path=str(tmp_path / "skwad"),
        create_worktree=True,
        branch_name="feature",
    )

    assert result.success is True
    assert directory.agents[result.agent_id].folder == str(tmp_path / "skwad-feature")
    assert repo_provider.created == [
        (str(tmp_path / "skwad"), "feature", str(tmp_path / "skwad-feature"))
    ]


@pytest.mark.asyncio
async def test_create_agent_worktree_requires_branch(coordinator, tmp_path):
    result = await coordinator.create_agent(
        name="feature", agent_type="claude", repo_path=str(tmp_path), create_worktree=True
    )
    assert result.success is False


@pytest.mark.asyncio
async def test_companion_limit_per_owner(coordinator, tmp_path):
    # alice already owns one companion
    for name in ("second", "third"):
        result = await coordinator.create_agent(
            name=name,
            agent_type="claude",
            repo_path=str(tmp_path),
            created_by=ALICE_ID,
            companion=True,
        )
        assert result.success is True

    result = await coordinator.create_agent(
        name="fourth",
        agent_type="claude",
        repo_path=str(tmp_path),
        created_by=ALICE_ID,
        companion=True,
    )
    assert result.success is False
    assert "Maximum of 3" in result.message


@pytest.mark.asyncio
async def test_close_agent_requires_creator(coordinator, directory):
    await coordinator.register_agent(COMPANION_ID)

    denied = await coordinator.close_agent(BOB_ID, "helper")
    assert denied.success is False
    assert "Permission denied" in denied.message

    closed = await coordinator.close_agent(ALICE_ID, "helper")
    assert closed.success is True
    assert COMPANION_ID not in directory.agents
    assert await coordinator.get_session_for_agent(COMPANION_ID) is None


@pytest.mark.asyncio
async def test_close_agent_outside_workspace(coordinator):
    result = await coordinator.close_agent(ALICE_ID, "dave")
    assert result.success is False
    assert "not found" in result.message


# Maintenance


@pytest.mark.asyncio
async def test_cleanup_expires_sessions_and_orphan_messages(coordinator):
    await coordinator.register_agent(ALICE_ID)
    session = await coordinator.get_session_for_agent(ALICE_ID)
    session.last_activity -= timedelta(hours=2)
    await coordinator.message_store.add(Message(sender=ALICE_ID, recipient="gone", content="x"))

    result = await coordinator.cleanup(max_idle_seconds=3600)

    assert result == {"expired_sessions": 1, "removed_messages": 1}


@pytest.mark.asyncio
async def test_status_snapshot(coordinator):
    await register_all(coordinator, ALICE_ID, BOB_ID)
    await coordinator.send_message(ALICE_ID, BOB_ID, "hi")
    await coordinator.update_metadata(BOB_ID, {"cwd": "/src/bob"})

    entries = {entry["name"]: entry for entry in await coordinator.get_status_snapshot()}

    assert entries["bob"]["unread_messages"] == 1
    assert entries["bob"]["metadata"] == {"cwd": "/src/bob"}
    assert "mcp_session" in entries["bob"]
    assert "mcp_session" not in entries["dave"]
    assert entries["terminal"]["agent_type"] == "shell"
