import logging

from helpdesk.security.roles import (
    AgentAllowList,
    AppRole,
    SessionContext,
    open_session,
    refresh_session,
    resolve_role,
)


def test_resolve_role_is_case_insensitive():
    allow_list = AgentAllowList.of(["Bob@Example.com "])

    assert resolve_role("bob@example.COM", allow_list) == AppRole.AGENT
    assert resolve_role("alice@example.com", allow_list) == AppRole.USER
    assert resolve_role(None, allow_list) == AppRole.USER


def test_allow_list_supports_domain_wildcards():
    allow_list = AgentAllowList.of(["*@it.example.com"])

    assert "carol@it.example.com" in allow_list
    assert "carol@example.com" not in allow_list


def test_allow_list_normalises_and_deduplicates_entries():
    allow_list = AgentAllowList.of(["Bob@example.com", " bob@example.com", "", "Carol@Example.com"])

    assert len(allow_list) == 2
    assert allow_list.sorted() == ["bob@example.com", "carol@example.com"]


def test_open_session_resolves_role_and_admin_flag():
    session = open_session(
        " Bob@Example.com ",
        None,
        AgentAllowList.of(["bob@example.com"]),
        admins=("BOB@example.com",),
    )

    assert session.is_agent
    assert session.is_admin
    assert session.key == "bob@example.com"
    assert session.display_name == "Bob@Example.com"


def test_refresh_promotes_session_when_allow_list_grows(caplog):
    caplog.set_level(logging.INFO)
    session = open_session("alice@example.com", "Alice", AgentAllowList.of([]))
    assert session.role == AppRole.USER

    promoted = refresh_session(session, AgentAllowList.of(["alice@example.com"]))

    assert promoted.role == AppRole.AGENT
    assert promoted.display_name == "Alice"
    assert "Role of alice@example.com changed" in caplog.text


def test_refresh_demotes_removed_agent():
    session = SessionContext(identity="bob@example.com", display_name="Bob", role=AppRole.AGENT)

    demoted = refresh_session(session, AgentAllowList.of(["carol@example.com"]))

    assert demoted.role == AppRole.USER


def test_refresh_without_change_returns_same_session():
    session = SessionContext(identity="bob@example.com", display_name="Bob", role=AppRole.AGENT)
    assert refresh_session(session, AgentAllowList.of(["bob@example.com"])) is session
