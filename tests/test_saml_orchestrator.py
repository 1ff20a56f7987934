# FedGate - SAML Federated Authentication Test Backend
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Test Suite: SAML Orchestrator
=============================

Drives the login, ACS, logout and SLO flows against a scripted SAML
provider and a real (in-memory) user store. Cookies travel between hops
exactly as a browser would carry them.
"""

import json
import logging
from unittest.mock import AsyncMock

import pytest

from fedgate.auth.provider import (
    Assertion,
    LogoutRequestMessage,
    LogoutResponseMessage,
    NameID,
    SamlLibraryError,
    Subject,
)
from fedgate.auth.saml import SamlOrchestrator, with_error_flag
from fedgate.auth.sessions import (
    ACCESS_COOKIE,
    ERROR_COOKIE,
    REFRESH_COOKIE,
    SLO_COOKIE,
    SSO_COOKIE,
    AuthSessionPayload,
    SLOSessionPayload,
    SSOSessionPayload,
)
from fedgate.observability.logging import get_request_context
from fedgate_core.exceptions import (
    Base64SamlRequestError,
    Base64SamlResponseError,
    ConfigError,
    CookieNoneError,
    DBCommitError,
    EmptyLogoutRequestIdError,
    EmptyNameIdError,
    InvalidNameIdError,
    OperationNotAllowedError,
    QueryError,
    SessionError,
    SLOAuthnRequestError,
    SLOValidationError,
    SSOAuthnRequestError,
    SSOParseResponseError,
    UnexpectedAssertionError,
    UnmarshalSamlRequestError,
    UnmarshalSamlResponseError,
)

from conftest import IDP_SLO_URL, IDP_SSO_URL, b64

REDIRECT_URL = "https://app.example.com/home"
REDIRECT_URL_ON_ERROR = "https://app.example.com/login-failed"
SAML_RESPONSE = b64("<samlp:Response/>")
LOGOUT_REQUEST = b64("<samlp:LogoutRequest/>")
LOGOUT_RESPONSE = b64("<samlp:LogoutResponse/>")


def sso_cookie(session_store, authn_request_id="_authn-1") -> dict[str, str]:
    token = session_store.sso.issue(
        SSOSessionPayload(
            authn_request_id=authn_request_id,
            redirect_url=REDIRECT_URL,
            redirect_url_on_error=REDIRECT_URL_ON_ERROR,
        )
    )
    return {SSO_COOKIE: token}


def slo_cookie(session_store, user_id: int, authn_request_id="_logout-1") -> dict[str, str]:
    token = session_store.slo.issue(
        SLOSessionPayload(
            user_id=user_id,
            authn_request_id=authn_request_id,
            redirect_url=REDIRECT_URL,
            redirect_url_on_error=REDIRECT_URL_ON_ERROR,
        )
    )
    return {SLO_COOKIE: token}


async def signed_in_user(users, session_store, email="alice@example.com"):
    """Create a user holding live tokens; return (user_id, access cookie)."""
    async with users.transaction() as tx:
        user = await users.create_user(tx, email)
        tokens = session_store.auth.issue(AuthSessionPayload(user_id=user.id, email=email))
        await users.update_token(tx, user.id, tokens.access_token, tokens.refresh_token)
    return user.id, {ACCESS_COOKIE: tokens.access_token}


async def stored_tokens(users, email="alice@example.com"):
    async with users.transaction() as tx:
        user = await users.select_by_email(tx, email)
    return None if user is None else (user.access_token, user.refresh_token)


def read_error_cookie(session_store, make_request, jar):
    request = make_request("/saml/error", method="GET", cookies={ERROR_COOKIE: jar[ERROR_COOKIE].value})
    return session_store.error.get(request)


def wrapped(payload: str, width: int = 12) -> str:
    """Break base64 into CRLF-separated lines the way some IdPs post it."""
    return "\r\n".join(payload[i:i + width] for i in range(0, len(payload), width))


class TestWithErrorFlag:

    def test_plain_url(self):
        assert with_error_flag("https://app.example.com/e") == "https://app.example.com/e?saml_error=1"

    def test_url_with_query(self):
        assert with_error_flag("https://app.example.com/e?lang=ja") == "https://app.example.com/e?lang=ja&saml_error=1"


class TestCreate:

    async def test_loads_metadata_and_builds_provider(self, sp_config, idp_metadata, session_store, users, provider):
        class Loader:
            async def fetch_idp_metadata(self):
                return idp_metadata

        orchestrator = await SamlOrchestrator.create(
            sp_config, session_store, users, Loader(), provider_factory=lambda sp, idp: provider
        )

        assert orchestrator.idp_metadata == idp_metadata
        assert orchestrator.provider is provider

    async def test_provider_failure_is_config_error(self, sp_config, idp_metadata, session_store, users):
        class Loader:
            async def fetch_idp_metadata(self):
                return idp_metadata

        def broken(sp, idp):
            raise SamlLibraryError("sp cert missing")

        with pytest.raises(ConfigError):
            await SamlOrchestrator.create(sp_config, session_store, users, Loader(), provider_factory=broken)


# ============================================================
# LOGIN
# ============================================================


class TestLogin:

    async def test_posts_authn_request_to_idp(self, orchestrator, make_request):
        response = await orchestrator.execute_saml_login(
            make_request("/saml/login", method="GET"), REDIRECT_URL, REDIRECT_URL_ON_ERROR
        )

        assert response.status_code == 200
        body = response.body.decode("utf-8")
        assert 'id="SAMLRequestForm"' in body
        assert f'action="{IDP_SSO_URL}"' in body
        assert 'name="SAMLRequest"' in body
        assert "script-src 'sha256-" in response.headers["content-security-policy"]

    async def test_sets_sso_cookie(self, orchestrator, session_store, make_request, set_cookies):
        response = await orchestrator.execute_saml_login(
            make_request("/saml/login", method="GET"), REDIRECT_URL, REDIRECT_URL_ON_ERROR
        )

        jar = set_cookies(response)
        assert jar[SSO_COOKIE]["path"] == "/saml/acs"

        payload = session_store.sso.get(make_request("/saml/acs", cookies={SSO_COOKIE: jar[SSO_COOKIE].value}))
        assert payload == SSOSessionPayload(
            authn_request_id="_authn-1",
            redirect_url=REDIRECT_URL,
            redirect_url_on_error=REDIRECT_URL_ON_ERROR,
        )

    async def test_request_build_failure(self, orchestrator, provider, make_request):
        provider.authn_request = SamlLibraryError("no key")

        with pytest.raises(SSOAuthnRequestError):
            await orchestrator.execute_saml_login(
                make_request("/saml/login", method="GET"), REDIRECT_URL, REDIRECT_URL_ON_ERROR
            )


# ============================================================
# ACS
# ============================================================


class TestAcs:

    async def test_first_login_creates_user(self, orchestrator, session_store, users, provider, make_request, set_cookies):
        request = make_request(
            "/saml/acs", form={"SAMLResponse": SAML_RESPONSE}, cookies=sso_cookie(session_store)
        )

        response = await orchestrator.execute_saml_acs(request)

        assert response.status_code == 302
        assert response.headers["location"] == REDIRECT_URL
        assert ("parse_response", SAML_RESPONSE, "_authn-1") in provider.calls

        jar = set_cookies(response)
        assert jar[SSO_COOKIE]["max-age"] == "0"
        assert await stored_tokens(users) == (jar[ACCESS_COOKIE].value, jar[REFRESH_COOKIE].value)

        auth = session_store.auth.get(
            make_request("/", method="GET", cookies={ACCESS_COOKIE: jar[ACCESS_COOKIE].value})
        )
        assert auth.email == "alice@example.com"

        outcome = read_error_cookie(session_store, make_request, jar)
        assert outcome.code is None
        assert outcome.message is None

    async def test_returning_user_keeps_id(self, orchestrator, session_store, users, make_request, set_cookies):
        async with users.transaction() as tx:
            existing = await users.create_user(tx, "alice@example.com")

        response = await orchestrator.execute_saml_acs(
            make_request("/saml/acs", form={"SAMLResponse": SAML_RESPONSE}, cookies=sso_cookie(session_store))
        )

        jar = set_cookies(response)
        auth = session_store.auth.get(
            make_request("/", method="GET", cookies={ACCESS_COOKIE: jar[ACCESS_COOKIE].value})
        )
        assert auth.user_id == existing.id
        assert await stored_tokens(users) == (jar[ACCESS_COOKIE].value, jar[REFRESH_COOKIE].value)
        assert get_request_context()["user_id"] == str(existing.id)

    async def test_commit_failure_records_no_user(
        self, orchestrator, session_store, users, make_request, set_cookies, monkeypatch, caplog
    ):
        caplog.set_level(logging.INFO, logger="audit")

        async def failing_commit(session):
            await session.close()
            raise DBCommitError("disk full")

        monkeypatch.setattr(users, "commit", failing_commit)

        response = await orchestrator.execute_saml_acs(
            make_request("/saml/acs", form={"SAMLResponse": SAML_RESPONSE}, cookies=sso_cookie(session_store))
        )

        assert response.headers["location"] == f"{REDIRECT_URL_ON_ERROR}?saml_error=1"
        jar = set_cookies(response)
        assert ACCESS_COOKIE not in jar
        assert read_error_cookie(session_store, make_request, jar).code == DBCommitError.code
        monkeypatch.undo()
        assert await stored_tokens(users) is None

        actions = [r.action for r in caplog.records if getattr(r, "audit_event", False)]
        assert "create" not in actions
        assert "login" not in actions

    async def test_first_login_audits_create_then_login(
        self, orchestrator, session_store, make_request, caplog
    ):
        caplog.set_level(logging.INFO, logger="audit")

        await orchestrator.execute_saml_acs(
            make_request("/saml/acs", form={"SAMLResponse": SAML_RESPONSE}, cookies=sso_cookie(session_store))
        )

        actions = [r.action for r in caplog.records if getattr(r, "audit_event", False)]
        assert actions == ["create", "login"]

    async def test_missing_sso_cookie_does_not_redirect(self, orchestrator, make_request):
        with pytest.raises(CookieNoneError):
            await orchestrator.execute_saml_acs(make_request("/saml/acs", form={"SAMLResponse": SAML_RESPONSE}))

    async def test_invalid_sso_cookie_does_not_redirect(self, orchestrator, make_request):
        with pytest.raises(SessionError):
            await orchestrator.execute_saml_acs(
                make_request("/saml/acs", form={"SAMLResponse": SAML_RESPONSE}, cookies={SSO_COOKIE: "forged"})
            )

    async def test_invalid_response_redirects_to_error(
        self, orchestrator, session_store, users, provider, make_request, set_cookies
    ):
        provider.assertion = SamlLibraryError("signature mismatch")

        response = await orchestrator.execute_saml_acs(
            make_request("/saml/acs", form={"SAMLResponse": SAML_RESPONSE}, cookies=sso_cookie(session_store))
        )

        assert response.status_code == 302
        assert response.headers["location"] == f"{REDIRECT_URL_ON_ERROR}?saml_error=1"

        jar = set_cookies(response)
        assert jar[SSO_COOKIE]["max-age"] == "0"
        assert ACCESS_COOKIE not in jar
        assert await stored_tokens(users) is None

        outcome = read_error_cookie(session_store, make_request, jar)
        assert outcome.code == SSOParseResponseError.code
        assert outcome.message == "An internal error has occurred.\n(Error code: 0x80000010)"

    async def test_missing_saml_response(self, orchestrator, session_store, make_request, set_cookies):
        response = await orchestrator.execute_saml_acs(
            make_request("/saml/acs", form={}, cookies=sso_cookie(session_store))
        )

        jar = set_cookies(response)
        assert read_error_cookie(session_store, make_request, jar).code == SSOParseResponseError.code

    @pytest.mark.parametrize(
        "assertion",
        [
            Assertion(subject=None),
            Assertion(subject=Subject(name_id=None)),
            Assertion(subject=Subject(name_id=NameID(value=""))),
        ],
        ids=["no-subject", "no-nameid", "empty-nameid"],
    )
    async def test_unusable_assertion(
        self, orchestrator, session_store, users, provider, make_request, set_cookies, assertion
    ):
        provider.assertion = assertion

        response = await orchestrator.execute_saml_acs(
            make_request("/saml/acs", form={"SAMLResponse": SAML_RESPONSE}, cookies=sso_cookie(session_store))
        )

        assert response.headers["location"] == f"{REDIRECT_URL_ON_ERROR}?saml_error=1"
        jar = set_cookies(response)
        assert read_error_cookie(session_store, make_request, jar).code == UnexpectedAssertionError.code

    async def test_error_message_follows_accept_language(self, orchestrator, session_store, provider, make_request, set_cookies):
        provider.assertion = SamlLibraryError("expired")

        response = await orchestrator.execute_saml_acs(
            make_request(
                "/saml/acs",
                form={"SAMLResponse": SAML_RESPONSE},
                cookies=sso_cookie(session_store),
                headers={"Accept-Language": "ja-JP,ja;q=0.9"},
            )
        )

        outcome = read_error_cookie(session_store, make_request, set_cookies(response))
        assert outcome.message.startswith("インターナルエラー")


# ============================================================
# LOGOUT
# ============================================================


class TestLogout:

    async def test_requires_signed_in_user(self, orchestrator, make_request):
        with pytest.raises(CookieNoneError):
            await orchestrator.execute_saml_logout(
                make_request("/saml/logout", method="GET"), REDIRECT_URL, REDIRECT_URL_ON_ERROR
            )

    async def test_posts_logout_request(self, orchestrator, session_store, users, provider, make_request, set_cookies):
        user_id, cookies = await signed_in_user(users, session_store)

        response = await orchestrator.execute_saml_logout(
            make_request("/saml/logout", method="GET", cookies=cookies), REDIRECT_URL, REDIRECT_URL_ON_ERROR
        )

        assert response.status_code == 200
        body = response.body.decode("utf-8")
        assert f'action="{IDP_SLO_URL}"' in body
        assert 'name="SAMLRequest"' in body
        assert ("make_logout_request", "alice@example.com") in provider.calls

        jar = set_cookies(response)
        assert jar[SLO_COOKIE]["path"] == "/saml/slo"
        payload = session_store.slo.get(make_request("/saml/slo", cookies={SLO_COOKIE: jar[SLO_COOKIE].value}))
        assert payload.user_id == user_id
        assert payload.authn_request_id == "_logout-1"
        assert payload.redirect_url == REDIRECT_URL

    async def test_idp_without_slo_endpoint(self, orchestrator, session_store, users, provider, make_request):
        _, cookies = await signed_in_user(users, session_store)
        provider.slo_url = None

        with pytest.raises(SLOAuthnRequestError):
            await orchestrator.execute_saml_logout(
                make_request("/saml/logout", method="GET", cookies=cookies), REDIRECT_URL, REDIRECT_URL_ON_ERROR
            )

    async def test_request_build_failure(self, orchestrator, session_store, users, provider, make_request):
        _, cookies = await signed_in_user(users, session_store)
        provider.logout_request = SamlLibraryError("no key")

        with pytest.raises(SLOAuthnRequestError):
            await orchestrator.execute_saml_logout(
                make_request("/saml/logout", method="GET", cookies=cookies), REDIRECT_URL, REDIRECT_URL_ON_ERROR
            )


# ============================================================
# SLO
# ============================================================


class TestSloDispatch:

    async def test_neither_request_nor_response(self, orchestrator, make_request):
        with pytest.raises(OperationNotAllowedError):
            await orchestrator.execute_saml_slo(make_request("/saml/slo", form={"RelayState": "x"}))


class TestSloFromSelf:

    async def test_completes_logout(self, orchestrator, session_store, users, provider, make_request, set_cookies):
        user_id, _ = await signed_in_user(users, session_store)

        response = await orchestrator.execute_saml_slo(
            make_request("/saml/slo", form={"SAMLResponse": LOGOUT_RESPONSE}, cookies=slo_cookie(session_store, user_id))
        )

        assert response.status_code == 302
        assert response.headers["location"] == REDIRECT_URL
        assert ("validate_logout_response", LOGOUT_RESPONSE, "_logout-1") in provider.calls
        assert await stored_tokens(users) == ("", "")

        jar = set_cookies(response)
        assert jar[SLO_COOKIE]["max-age"] == "0"
        assert jar[ACCESS_COOKIE]["max-age"] == "0"
        assert jar[REFRESH_COOKIE]["max-age"] == "0"
        assert read_error_cookie(session_store, make_request, jar).code is None
        assert get_request_context()["user_id"] == str(user_id)

    async def test_line_wrapped_response(self, orchestrator, session_store, users, provider, make_request):
        user_id, _ = await signed_in_user(users, session_store)

        response = await orchestrator.execute_saml_slo(
            make_request(
                "/saml/slo",
                form={"SAMLResponse": wrapped(LOGOUT_RESPONSE)},
                cookies=slo_cookie(session_store, user_id),
            )
        )

        assert response.headers["location"] == REDIRECT_URL
        assert ("unmarshal_logout_response", b"<samlp:LogoutResponse/>") in provider.calls
        assert await stored_tokens(users) == ("", "")

    async def test_missing_slo_cookie(self, orchestrator, make_request):
        with pytest.raises(CookieNoneError):
            await orchestrator.execute_saml_slo(make_request("/saml/slo", form={"SAMLResponse": LOGOUT_RESPONSE}))

    async def test_mismatched_in_response_to(self, orchestrator, session_store, users, provider, make_request, set_cookies):
        user_id, _ = await signed_in_user(users, session_store)
        before = await stored_tokens(users)
        provider.inbound_logout_response = LogoutResponseMessage(
            id="_r", issuer=None, in_response_to="_someone-else", status=None
        )

        response = await orchestrator.execute_saml_slo(
            make_request("/saml/slo", form={"SAMLResponse": LOGOUT_RESPONSE}, cookies=slo_cookie(session_store, user_id))
        )

        assert response.status_code == 302
        assert response.headers["location"] == f"{REDIRECT_URL_ON_ERROR}?saml_error=1"
        assert await stored_tokens(users) == before

        jar = set_cookies(response)
        assert jar[SLO_COOKIE]["max-age"] == "0"
        assert ACCESS_COOKIE not in jar
        assert read_error_cookie(session_store, make_request, jar).code == InvalidNameIdError.code

    async def test_empty_in_response_to(self, orchestrator, session_store, users, provider, make_request, set_cookies):
        user_id, _ = await signed_in_user(users, session_store)
        provider.inbound_logout_response = LogoutResponseMessage(id="_r", issuer=None, in_response_to=None, status=None)

        response = await orchestrator.execute_saml_slo(
            make_request("/saml/slo", form={"SAMLResponse": LOGOUT_RESPONSE}, cookies=slo_cookie(session_store, user_id))
        )

        jar = set_cookies(response)
        assert read_error_cookie(session_store, make_request, jar).code == EmptyLogoutRequestIdError.code

    async def test_validation_failure(self, orchestrator, session_store, users, provider, make_request, set_cookies):
        user_id, _ = await signed_in_user(users, session_store)
        before = await stored_tokens(users)
        provider.validation_error = SamlLibraryError("bad signature")

        response = await orchestrator.execute_saml_slo(
            make_request("/saml/slo", form={"SAMLResponse": LOGOUT_RESPONSE}, cookies=slo_cookie(session_store, user_id))
        )

        jar = set_cookies(response)
        assert read_error_cookie(session_store, make_request, jar).code == SLOValidationError.code
        assert await stored_tokens(users) == before

    async def test_undecodable_response(self, orchestrator, session_store, users, make_request, set_cookies):
        user_id, _ = await signed_in_user(users, session_store)

        response = await orchestrator.execute_saml_slo(
            make_request("/saml/slo", form={"SAMLResponse": "%%%not-base64%%%"}, cookies=slo_cookie(session_store, user_id))
        )

        jar = set_cookies(response)
        assert read_error_cookie(session_store, make_request, jar).code == Base64SamlResponseError.code

    async def test_unreadable_response(self, orchestrator, session_store, users, provider, make_request, set_cookies):
        user_id, _ = await signed_in_user(users, session_store)
        provider.inbound_logout_response = SamlLibraryError("not a LogoutResponse")

        response = await orchestrator.execute_saml_slo(
            make_request("/saml/slo", form={"SAMLResponse": LOGOUT_RESPONSE}, cookies=slo_cookie(session_store, user_id))
        )

        jar = set_cookies(response)
        assert read_error_cookie(session_store, make_request, jar).code == UnmarshalSamlResponseError.code


class TestSloFromOtherSp:

    async def test_clears_matching_session(self, orchestrator, session_store, users, provider, make_request, set_cookies):
        _, cookies = await signed_in_user(users, session_store)

        response = await orchestrator.execute_saml_slo(
            make_request("/saml/slo", form={"SAMLRequest": LOGOUT_REQUEST}, cookies=cookies)
        )

        assert response.status_code == 200
        body = response.body.decode("utf-8")
        assert 'id="SAMLResponseForm"' in body
        assert f'action="{IDP_SLO_URL}"' in body
        assert ("make_logout_response", "_idp-logout-1") in provider.calls
        assert await stored_tokens(users) == ("", "")

        jar = set_cookies(response)
        assert jar[ACCESS_COOKIE]["max-age"] == "0"
        assert jar[REFRESH_COOKIE]["max-age"] == "0"

    async def test_without_session_still_answers(self, orchestrator, session_store, users, make_request, set_cookies):
        await signed_in_user(users, session_store)
        before = await stored_tokens(users)

        response = await orchestrator.execute_saml_slo(
            make_request("/saml/slo", form={"SAMLRequest": LOGOUT_REQUEST})
        )

        assert response.status_code == 200
        assert 'id="SAMLResponseForm"' in response.body.decode("utf-8")
        assert await stored_tokens(users) == before
        assert ACCESS_COOKIE not in set_cookies(response)

    async def test_different_user_is_left_alone(self, orchestrator, session_store, users, provider, make_request, set_cookies):
        _, cookies = await signed_in_user(users, session_store)
        before = await stored_tokens(users)
        provider.inbound_logout_request = LogoutRequestMessage(
            id="_idp-logout-2", issuer=None, name_id=NameID(value="bob@example.com")
        )

        response = await orchestrator.execute_saml_slo(
            make_request("/saml/slo", form={"SAMLRequest": LOGOUT_REQUEST}, cookies=cookies)
        )

        assert response.status_code == 200
        assert await stored_tokens(users) == before
        assert ACCESS_COOKIE not in set_cookies(response)

    async def test_line_wrapped_request(self, orchestrator, session_store, users, provider, make_request):
        _, cookies = await signed_in_user(users, session_store)

        response = await orchestrator.execute_saml_slo(
            make_request("/saml/slo", form={"SAMLRequest": wrapped(LOGOUT_REQUEST)}, cookies=cookies)
        )

        assert response.status_code == 200
        assert ("unmarshal_logout_request", b"<samlp:LogoutRequest/>") in provider.calls
        assert await stored_tokens(users) == ("", "")

    async def test_session_user_without_row_still_answers(
        self, orchestrator, session_store, users, provider, make_request, set_cookies
    ):
        await signed_in_user(users, session_store)
        before = await stored_tokens(users)
        stale = session_store.auth.issue(AuthSessionPayload(user_id=999, email="alice@example.com"))

        response = await orchestrator.execute_saml_slo(
            make_request("/saml/slo", form={"SAMLRequest": LOGOUT_REQUEST}, cookies={ACCESS_COOKIE: stale.access_token})
        )

        assert response.status_code == 200
        assert 'id="SAMLResponseForm"' in response.body.decode("utf-8")
        assert ("make_logout_response", "_idp-logout-1") in provider.calls
        assert await stored_tokens(users) == before

        jar = set_cookies(response)
        assert jar[ACCESS_COOKIE]["max-age"] == "0"
        assert jar[REFRESH_COOKIE]["max-age"] == "0"

    async def test_token_update_failure_still_answers(
        self, orchestrator, session_store, users, make_request, set_cookies, monkeypatch
    ):
        _, cookies = await signed_in_user(users, session_store)
        monkeypatch.setattr(users, "update_token", AsyncMock(side_effect=QueryError("connection reset")))

        response = await orchestrator.execute_saml_slo(
            make_request("/saml/slo", form={"SAMLRequest": LOGOUT_REQUEST}, cookies=cookies)
        )

        assert response.status_code == 200
        assert 'id="SAMLResponseForm"' in response.body.decode("utf-8")
        assert set_cookies(response)[ACCESS_COOKIE]["max-age"] == "0"

    async def test_empty_name_id_rolls_back(self, orchestrator, session_store, users, provider, make_request, monkeypatch):
        _, cookies = await signed_in_user(users, session_store)
        provider.inbound_logout_request = LogoutRequestMessage(id="_idp-logout-3", issuer=None, name_id=None)
        commit = AsyncMock(wraps=users.commit)
        rollback = AsyncMock(wraps=users.rollback)
        monkeypatch.setattr(users, "commit", commit)
        monkeypatch.setattr(users, "rollback", rollback)

        with pytest.raises(EmptyNameIdError):
            await orchestrator.execute_saml_slo(
                make_request("/saml/slo", form={"SAMLRequest": LOGOUT_REQUEST}, cookies=cookies)
            )

        commit.assert_not_awaited()
        rollback.assert_awaited_once()

    async def test_undecodable_request(self, orchestrator, make_request):
        with pytest.raises(Base64SamlRequestError):
            await orchestrator.execute_saml_slo(make_request("/saml/slo", form={"SAMLRequest": "***"}))

    async def test_unreadable_request(self, orchestrator, provider, make_request):
        provider.inbound_logout_request = SamlLibraryError("not a LogoutRequest")

        with pytest.raises(UnmarshalSamlRequestError):
            await orchestrator.execute_saml_slo(make_request("/saml/slo", form={"SAMLRequest": LOGOUT_REQUEST}))


# ============================================================
# ERROR
# ============================================================


class TestError:

    async def test_delivers_outcome_once(self, orchestrator, session_store, provider, make_request, set_cookies):
        provider.assertion = SamlLibraryError("expired")
        acs = await orchestrator.execute_saml_acs(
            make_request("/saml/acs", form={"SAMLResponse": SAML_RESPONSE}, cookies=sso_cookie(session_store))
        )
        error_token = set_cookies(acs)[ERROR_COOKIE].value

        response = await orchestrator.execute_saml_error(
            make_request("/saml/error", method="GET", cookies={ERROR_COOKIE: error_token})
        )

        assert response.status_code == 200
        body = json.loads(response.body)
        assert body["code"] == SSOParseResponseError.code
        assert "0x80000010" in body["message"]
        assert isinstance(body["timestamp"], int)
        assert set_cookies(response)[ERROR_COOKIE]["max-age"] == "0"

    async def test_nothing_to_deliver(self, orchestrator, make_request):
        with pytest.raises(CookieNoneError):
            await orchestrator.execute_saml_error(make_request("/saml/error", method="GET"))


# ============================================================
# END TO END
# ============================================================


class TestFullCycle:

    async def test_login_then_logout(self, orchestrator, session_store, users, make_request, set_cookies):
        login = await orchestrator.execute_saml_login(
            make_request("/saml/login", method="GET"), REDIRECT_URL, REDIRECT_URL_ON_ERROR
        )
        sso_token = set_cookies(login)[SSO_COOKIE].value

        acs = await orchestrator.execute_saml_acs(
            make_request("/saml/acs", form={"SAMLResponse": SAML_RESPONSE}, cookies={SSO_COOKIE: sso_token})
        )
        assert acs.headers["location"] == REDIRECT_URL
        access_token = set_cookies(acs)[ACCESS_COOKIE].value
        assert (await stored_tokens(users))[0] == access_token

        logout = await orchestrator.execute_saml_logout(
            make_request("/saml/logout", method="GET", cookies={ACCESS_COOKIE: access_token}),
            REDIRECT_URL,
            REDIRECT_URL_ON_ERROR,
        )
        slo_token = set_cookies(logout)[SLO_COOKIE].value

        slo = await orchestrator.execute_saml_slo(
            make_request("/saml/slo", form={"SAMLResponse": LOGOUT_RESPONSE}, cookies={SLO_COOKIE: slo_token})
        )
        assert slo.headers["location"] == REDIRECT_URL
        assert await stored_tokens(users) == ("", "")

    async def test_alice_first_login(self, orchestrator, session_store, users, make_request, set_cookies, monkeypatch):
        create_user = AsyncMock(wraps=users.create_user)
        commit = AsyncMock(wraps=users.commit)
        monkeypatch.setattr(users, "create_user", create_user)
        monkeypatch.setattr(users, "commit", commit)

        login = await orchestrator.execute_saml_login(
            make_request("/saml/login", method="GET"), "https://app/x", "https://app/err"
        )
        sso_token = set_cookies(login)[SSO_COOKIE].value
        sso = session_store.sso.get(make_request("/saml/acs", cookies={SSO_COOKIE: sso_token}))
        assert sso.redirect_url == "https://app/x"

        acs = await orchestrator.execute_saml_acs(
            make_request("/saml/acs", form={"SAMLResponse": SAML_RESPONSE}, cookies={SSO_COOKIE: sso_token})
        )

        create_user.assert_awaited_once()
        assert create_user.await_args.args[1] == "alice@example.com"
        commit.assert_awaited_once()
        jar = set_cookies(acs)
        assert jar[ACCESS_COOKIE].value
        assert jar[REFRESH_COOKIE].value
        assert acs.headers["location"] == "https://app/x"
