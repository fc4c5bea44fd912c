"""Tests for the shared provisioning logic.

Covers input validation, parent-first ordering, idempotence, failure
isolation, duplicate and race handling, cancellation and bounded
concurrency. Most cases run against the in-memory Gmail mailbox because
its flat label namespace makes the created names easy to assert on.
"""

import json
import threading
from unittest.mock import MagicMock

import pytest
import requests

from inboxmap.core.errors import AuthRequired, ExternalServiceError, ValidationError
from inboxmap.providers.base import (
    REASON_ALREADY_EXISTS,
    REASON_CANCELLED,
    REASON_DUPLICATE,
    ProviderAdapter,
    ProvisionItem,
)
from inboxmap.providers.client import ProviderHTTPClient
from inboxmap.providers.gmail import GmailAdapter
from inboxmap.providers.o365 import O365Adapter
from inboxmap.taxonomy.models import Provider
from inboxmap.taxonomy.registry import PROVIDER_CONFIGS

from fakes import TOKEN, FakeGmailMailbox, FakeGraphMailbox


def _paths(entries: list[dict]) -> list[list[str]]:
    return [entry["path"] for entry in entries]


def _reply(status_code: int, body: object) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.headers = {}
    if isinstance(body, str):
        response.text = body
        response.json.side_effect = ValueError("Expecting value")
    else:
        response.text = json.dumps(body)
        response.json.return_value = body
    response.content = response.text.encode()
    return response


def _gmail_session(support_reply: object):
    """Session.request stand-in: an empty label list, and SUPPORT's create misbehaves."""

    def request(method: str, url: str, **kwargs):
        if method == "GET":
            return _reply(200, {"labels": []})
        name = kwargs["json"]["name"]
        if name != "SUPPORT":
            return _reply(200, {"id": f"Label_{name}", "name": name})
        if isinstance(support_reply, Exception):
            raise support_reply
        return _reply(200, support_reply)

    return request


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidation:
    """Malformed requests are rejected before any provider call."""

    @pytest.mark.parametrize(
        "items, field",
        [
            ([], "items"),
            ([{"path": []}], "items.0.path"),
            ([{"path": ["A", "B", "C", "D", "E", "F"]}], "items.0.path"),
            ([{"path": "SALES"}], "items.0.path"),
            ([{"path": ["SALES", "  "]}], "items.0.path.1"),
            ([{"path": ["X" * 101]}], "items.0.path.0"),
            ([{"path": ["SALES", 7]}], "items.0.path.1"),
            ([{"path": ["SALES/Quotes"]}], "items.0.path.0"),
            (["SALES"], "items.0"),
        ],
    )
    def test_rejected(
        self,
        gmail_adapter: GmailAdapter,
        gmail_mailbox: FakeGmailMailbox,
        items: list,
        field: str,
    ) -> None:
        with pytest.raises(ValidationError) as exc_info:
            gmail_adapter.provision("user-1", TOKEN, items)

        assert field in [detail["field"] for detail in exc_info.value.details]
        gmail_mailbox.client.get.assert_not_called()
        gmail_mailbox.client.post.assert_not_called()

    def test_too_many_items(self, gmail_adapter: GmailAdapter) -> None:
        items = [{"path": [f"L{i}"]} for i in range(51)]
        with pytest.raises(ValidationError, match="1 to 50 items"):
            gmail_adapter.provision("user-1", TOKEN, items)

    def test_gmail_full_name_limit(self, gmail_adapter: GmailAdapter) -> None:
        """Gmail checks the joined label name against 225 characters."""
        items = [{"path": ["A" * 100, "B" * 100, "C" * 30]}]
        with pytest.raises(ValidationError, match="problem"):
            gmail_adapter.provision("user-1", TOKEN, items)

    def test_every_problem_reported(self, gmail_adapter: GmailAdapter) -> None:
        items = [{"path": []}, {"path": ["ok"]}, {"path": [""]}]
        with pytest.raises(ValidationError) as exc_info:
            gmail_adapter.provision("user-1", TOKEN, items)
        assert [d["field"] for d in exc_info.value.details] == ["items.0.path", "items.2.path.0"]

    def test_validation_precedes_token_check(self, gmail_adapter: GmailAdapter) -> None:
        with pytest.raises(ValidationError):
            gmail_adapter.provision("user-1", None, [{"path": []}])

    def test_token_required(self, gmail_adapter: GmailAdapter) -> None:
        with pytest.raises(AuthRequired):
            gmail_adapter.provision("user-1", None, [{"path": ["SALES"]}])

    def test_segments_trimmed(self, gmail_adapter: GmailAdapter, gmail_mailbox: FakeGmailMailbox):
        gmail_adapter.provision("user-1", TOKEN, [{"path": ["  SALES ", " Quotes"]}])
        assert gmail_mailbox.created == ["SALES", "SALES/Quotes"]

    def test_accepts_provision_items(self, gmail_adapter: GmailAdapter) -> None:
        report = gmail_adapter.provision(
            "user-1", TOKEN, [ProvisionItem(path=("URGENT",), color="#fb4c2f")]
        )
        assert _paths(report.created) == [["URGENT"]]


# ---------------------------------------------------------------------------
# Ordering and idempotence
# ---------------------------------------------------------------------------


class TestOrdering:
    """Parents are always created before their children."""

    def test_parent_first_regardless_of_input_order(
        self, gmail_adapter: GmailAdapter, gmail_mailbox: FakeGmailMailbox
    ) -> None:
        report = gmail_adapter.provision(
            "user-1", TOKEN, [{"path": ["SALES", "New Leads"]}, {"path": ["SALES"]}]
        )

        assert gmail_mailbox.created == ["SALES", "SALES/New Leads"]
        assert _paths(report.created) == [["SALES"], ["SALES", "New Leads"]]
        assert report.created[1]["createdAncestors"] == []

    def test_missing_ancestors_created(
        self, gmail_adapter: GmailAdapter, gmail_mailbox: FakeGmailMailbox
    ) -> None:
        report = gmail_adapter.provision(
            "user-1", TOKEN, [{"path": ["BANKING", "Receipts", "Payment Sent"]}]
        )

        assert gmail_mailbox.created == [
            "BANKING",
            "BANKING/Receipts",
            "BANKING/Receipts/Payment Sent",
        ]
        assert report.created[0]["createdAncestors"] == [["BANKING"], ["BANKING", "Receipts"]]

    def test_order_items_is_depth_then_path(self) -> None:
        items = [
            ProvisionItem(("b", "x")),
            ProvisionItem(("B",)),
            ProvisionItem(("a", "y", "z")),
            ProvisionItem(("A",)),
        ]
        ordered = ProviderAdapter.order_items(items)
        assert [item.path for item in ordered] == [("A",), ("B",), ("b", "x"), ("a", "y", "z")]


class TestIdempotence:
    """Running the same request twice never duplicates anything."""

    def test_second_run_skips_everything(
        self, gmail_adapter: GmailAdapter, gmail_mailbox: FakeGmailMailbox
    ) -> None:
        items = [{"path": ["SALES"]}, {"path": ["SALES", "Quotes"]}, {"path": ["URGENT"]}]

        first = gmail_adapter.provision("user-1", TOKEN, items)
        created_ids = {tuple(e["path"]): e["providerId"] for e in first.created}
        post_count = gmail_mailbox.client.post.call_count

        second = gmail_adapter.provision("user-1", TOKEN, items)

        assert gmail_mailbox.client.post.call_count == post_count
        assert second.created == []
        assert {e["reason"] for e in second.skipped} == {REASON_ALREADY_EXISTS}
        assert {tuple(e["path"]): e["providerId"] for e in second.skipped} == created_ids

    def test_existing_match_is_case_insensitive(
        self, gmail_adapter: GmailAdapter, gmail_mailbox: FakeGmailMailbox
    ) -> None:
        label_id = gmail_mailbox.add("sales")
        report = gmail_adapter.provision("user-1", TOKEN, [{"path": ["SALES"]}])
        assert report.skipped == [
            {"path": ["SALES"], "providerId": label_id, "reason": REASON_ALREADY_EXISTS}
        ]

    def test_o365_second_run_skips(
        self, o365_adapter: O365Adapter, graph_mailbox: FakeGraphMailbox
    ) -> None:
        items = [{"path": ["SUPPORT", "Technical"]}]
        o365_adapter.provision("user-1", TOKEN, items)
        report = o365_adapter.provision("user-1", TOKEN, items)

        assert len(graph_mailbox.created) == 2
        assert report.skipped[0]["reason"] == REASON_ALREADY_EXISTS


# ---------------------------------------------------------------------------
# Failures, duplicates and races
# ---------------------------------------------------------------------------


class TestFailureIsolation:
    """One failing item does not stop the others."""

    def test_failed_item_recorded(
        self, gmail_adapter: GmailAdapter, gmail_mailbox: FakeGmailMailbox
    ) -> None:
        gmail_mailbox.fail_names = {"SUPPORT"}
        items = [{"path": ["SALES"]}, {"path": ["SUPPORT"]}, {"path": ["URGENT"]}]

        report = gmail_adapter.provision("user-1", TOKEN, items)

        assert _paths(report.created) == [["SALES"], ["URGENT"]]
        assert report.failed[0]["path"] == ["SUPPORT"]
        assert report.failed[0]["statusCode"] == 500
        assert not report.all_failed

    def test_failed_ancestor_fails_child_only(
        self, gmail_adapter: GmailAdapter, gmail_mailbox: FakeGmailMailbox
    ) -> None:
        gmail_mailbox.fail_names = {"BANKING"}
        items = [{"path": ["BANKING", "Invoices"]}, {"path": ["PROMO"]}]

        report = gmail_adapter.provision("user-1", TOKEN, items)

        assert _paths(report.failed) == [["BANKING", "Invoices"]]
        assert _paths(report.created) == [["PROMO"]]
        assert "BANKING/Invoices" not in gmail_mailbox.created

    def test_all_failed(self, gmail_adapter: GmailAdapter, gmail_mailbox: FakeGmailMailbox):
        gmail_mailbox.fail_names = {"A", "B"}
        report = gmail_adapter.provision("user-1", TOKEN, [{"path": ["A"]}, {"path": ["B"]}])
        assert report.all_failed

    def test_listing_failure_aborts(
        self, gmail_adapter: GmailAdapter, gmail_mailbox: FakeGmailMailbox
    ) -> None:
        """Without the existence index nothing can be provisioned safely."""
        gmail_mailbox.fail_listing = True
        with pytest.raises(ExternalServiceError):
            gmail_adapter.provision("user-1", TOKEN, [{"path": ["SALES"]}])
        gmail_mailbox.client.post.assert_not_called()

    def test_summary_accounts_for_every_item(
        self, gmail_adapter: GmailAdapter, gmail_mailbox: FakeGmailMailbox
    ) -> None:
        gmail_mailbox.add("URGENT")
        gmail_mailbox.fail_names = {"PHONE"}
        items = [
            {"path": ["URGENT"]},
            {"path": ["PHONE"]},
            {"path": ["MISC"]},
            {"path": ["misc"]},
        ]

        summary = gmail_adapter.provision("user-1", TOKEN, items).summary()

        assert summary == {
            "totalRequested": 4,
            "totalCreated": 1,
            "totalSkipped": 2,
            "totalFailed": 1,
        }

    @pytest.mark.parametrize(
        "support_reply",
        [
            requests.exceptions.ChunkedEncodingError("connection broken mid-body"),
            "<html>proxy error</html>",
            {"name": "SUPPORT"},
        ],
        ids=["broken-stream", "html-body", "no-id"],
    )
    def test_transport_failure_isolated(self, support_reply: object) -> None:
        """Failures below the JSON layer fail one item, not the whole run."""
        session = MagicMock(spec=requests.Session)
        session.request.side_effect = _gmail_session(support_reply)
        client = ProviderHTTPClient("gmail", "https://gmail.test", session=session)
        adapter = GmailAdapter(client, PROVIDER_CONFIGS[Provider.GMAIL])
        items = [{"path": ["SALES"]}, {"path": ["SUPPORT"]}, {"path": ["URGENT"]}]

        report = adapter.provision("user-1", TOKEN, items)

        assert _paths(report.created) == [["SALES"], ["URGENT"]]
        assert _paths(report.failed) == [["SUPPORT"]]
        assert report.summary()["totalFailed"] == 1


class TestDuplicatesAndRaces:
    """Duplicate paths in one request and concurrent creations."""

    def test_duplicate_in_request(
        self, gmail_adapter: GmailAdapter, gmail_mailbox: FakeGmailMailbox
    ) -> None:
        report = gmail_adapter.provision("user-1", TOKEN, [{"path": ["SALES"]}, {"path": ["sales"]}])

        assert gmail_mailbox.created == ["SALES"]
        assert report.skipped == [
            {"path": ["sales"], "providerId": None, "reason": REASON_DUPLICATE}
        ]

    def test_conflict_adopts_existing(
        self, gmail_adapter: GmailAdapter, gmail_mailbox: FakeGmailMailbox
    ) -> None:
        """A label created by someone else after the listing is adopted, not duplicated."""
        gmail_mailbox.conflict_names = {"SALES"}

        report = gmail_adapter.provision("user-1", TOKEN, [{"path": ["SALES"]}])

        assert report.failed == []
        assert report.skipped == [
            {"path": ["SALES"], "providerId": "Label_raced", "reason": REASON_ALREADY_EXISTS}
        ]

    def test_conflict_on_ancestor_continues(
        self, gmail_adapter: GmailAdapter, gmail_mailbox: FakeGmailMailbox
    ) -> None:
        gmail_mailbox.conflict_names = {"SALES"}

        report = gmail_adapter.provision("user-1", TOKEN, [{"path": ["SALES", "Quotes"]}])

        assert report.created[0]["createdAncestors"] == []
        assert gmail_mailbox.created == ["SALES/Quotes"]


# ---------------------------------------------------------------------------
# Cancellation and concurrency
# ---------------------------------------------------------------------------


class TestCancellation:
    """A set cancel event stops further items from starting."""

    def test_cancelled_before_start(
        self, gmail_adapter: GmailAdapter, gmail_mailbox: FakeGmailMailbox
    ) -> None:
        cancel = threading.Event()
        cancel.set()

        report = gmail_adapter.provision(
            "user-1", TOKEN, [{"path": ["SALES"]}, {"path": ["URGENT"]}], cancel_event=cancel
        )

        assert report.cancelled
        assert {e["reason"] for e in report.skipped} == {REASON_CANCELLED}
        gmail_mailbox.client.post.assert_not_called()

    def test_cancel_mid_run_finishes_in_flight_item(
        self, gmail_adapter: GmailAdapter, gmail_mailbox: FakeGmailMailbox
    ) -> None:
        cancel = threading.Event()
        gmail_mailbox.on_create = lambda name: cancel.set()

        report = gmail_adapter.provision(
            "user-1",
            TOKEN,
            [{"path": ["A"]}, {"path": ["B"]}, {"path": ["C"]}],
            cancel_event=cancel,
        )

        assert gmail_mailbox.created == ["A"]
        assert _paths(report.created) == [["A"]]
        assert _paths(report.skipped) == [["B"], ["C"]]
        assert report.to_dict()["cancelled"] is True


class TestConcurrency:
    """Independent subtrees may run in parallel; prefixes never do."""

    def test_parallel_subtrees_keep_parent_order(self, gmail_mailbox: FakeGmailMailbox) -> None:
        adapter = GmailAdapter(
            gmail_mailbox.client, PROVIDER_CONFIGS[Provider.GMAIL], max_concurrency=4
        )
        items = [
            {"path": [root, child, leaf]}
            for root in ("SALES", "SUPPORT", "BANKING", "PROMO")
            for child in ("One", "Two")
            for leaf in ("x", "y")
        ] + [{"path": [root]} for root in ("SALES", "SUPPORT", "BANKING", "PROMO")]

        report = adapter.provision("user-1", TOKEN, items)

        assert len(report.created) == len(items)
        assert report.failed == []
        created = gmail_mailbox.created
        assert len(created) == len(set(created))
        for name in created:
            if "/" in name:
                parent = name.rsplit("/", 1)[0]
                assert created.index(parent) < created.index(name)

    def test_report_order_is_deterministic(self, gmail_mailbox: FakeGmailMailbox) -> None:
        adapter = GmailAdapter(
            gmail_mailbox.client, PROVIDER_CONFIGS[Provider.GMAIL], max_concurrency=3
        )
        items = [{"path": ["C", "1"]}, {"path": ["A"]}, {"path": ["B", "2"]}, {"path": ["C"]}]

        report = adapter.provision("user-1", TOKEN, items)

        assert _paths(report.created) == [["A"], ["C"], ["B", "2"], ["C", "1"]]
