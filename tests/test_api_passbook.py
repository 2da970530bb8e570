"""
Tests for the PassBook HTTP API.

This module covers:
- PassBook creation, reads, edits, lifecycle and deletion
- Purchases, memberships and payouts over HTTP
- Mapping of engine errors to status codes
- API key enforcement
- Health and metrics endpoints
"""

import json
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import pytest

import api.utils

AUTHORITY = "authority-wallet"
CREATOR_A = "creator-a"
CREATOR_B = "creator-b"
BUYER = "buyer-wallet"
PRICE = 10_000_000


def signed(headers, *signers):
    return {**headers, "X-Signers": ",".join(signers)}


def post(client, path, headers, payload=None, signers=()):
    return client.post(path, data=json.dumps(payload or {}), headers=signed(headers, *signers))


@pytest.fixture
def create_payload(make_init_args):
    """Factory: JSON body for POST /passbooks with a funded collectible source."""

    def _payload(**overrides):
        args = make_init_args(**overrides)
        return {
            "authority": args.authority,
            "mint": args.mint,
            "source_token_account": args.source_token_account,
            "name": args.name,
            "description": args.description,
            "uri": args.uri,
            "price": args.price,
            "creators": [c.to_dict() for c in args.creators],
            "access": args.access,
            **{k: v for k, v in overrides.items() if k not in ("mint", "source_token_account")},
        }

    return _payload


class TestPassBookEndpoints:
    """Tests for PassBook listing and lifecycle endpoints."""

    def test_routes_registered(self, flask_app):
        rules = {(rule.rule, method) for rule in flask_app.url_map.iter_rules() for method in rule.methods}
        assert ("/passbooks", "POST") in rules
        assert ("/passbooks/<address>/buy", "POST") in rules
        assert ("/payouts/<authority>/<mint>/withdraw", "POST") in rules
        assert ("/metrics", "GET") in rules

    def test_create_pass_book(self, flask_client, test_auth_headers, create_payload):
        response = post(flask_client, "/passbooks", test_auth_headers, create_payload(), [AUTHORITY])
        assert response.status_code == 201
        data = json.loads(response.data)
        assert len(data["address"]) == 64
        assert data["pass_book"]["state"] == "not_activated"
        assert data["pass_book"]["creators"][0] == {"address": CREATOR_A, "share": 50}

    def test_create_missing_field(self, flask_client, test_auth_headers, create_payload):
        payload = create_payload()
        del payload["price"]
        response = post(flask_client, "/passbooks", test_auth_headers, payload, [AUTHORITY])
        assert response.status_code == 400
        assert "price" in json.loads(response.data)["error"]

    def test_create_wrong_type(self, flask_client, test_auth_headers, create_payload):
        payload = create_payload()
        payload["price"] = "ten"
        response = post(flask_client, "/passbooks", test_auth_headers, payload, [AUTHORITY])
        assert response.status_code == 400

    def test_create_without_signature(self, flask_client, test_auth_headers, create_payload):
        response = post(flask_client, "/passbooks", test_auth_headers, create_payload())
        assert response.status_code == 403
        data = json.loads(response.data)
        assert data["name"] == "MissingRequiredSignature"

    def test_create_bad_shares(self, flask_client, test_auth_headers, create_payload):
        payload = create_payload()
        payload["creators"] = [{"address": CREATOR_A, "share": 70}, {"address": CREATOR_B, "share": 70}]
        response = post(flask_client, "/passbooks", test_auth_headers, payload, [AUTHORITY])
        assert response.status_code == 400
        assert json.loads(response.data)["name"] == "InvalidCreatorShares"

    def test_list_and_get(self, flask_client, listing):
        address = listing()
        data = json.loads(flask_client.get("/passbooks").data)
        assert data["count"] == 1
        assert data["pass_books"][0]["address"] == address

        response = flask_client.get(f"/passbooks/{address}")
        assert response.status_code == 200
        assert json.loads(response.data)["pass_book"]["state"] == "activated"

    def test_get_unknown(self, flask_client):
        response = flask_client.get("/passbooks/" + "0" * 64)
        assert response.status_code == 404

    def test_activate_twice_conflicts(self, flask_client, test_auth_headers, listing):
        address = listing()
        response = post(flask_client, f"/passbooks/{address}/activate", test_auth_headers, signers=[AUTHORITY])
        assert response.status_code == 409
        assert json.loads(response.data)["name"] == "PassBookIsAlreadyActivated"

    def test_deactivate_edit_delete(self, flask_client, test_auth_headers, listing):
        address = listing()
        response = post(flask_client, f"/passbooks/{address}/deactivate", test_auth_headers, signers=[AUTHORITY])
        assert json.loads(response.data)["pass_book"]["state"] == "deactivated"

        response = flask_client.patch(
            f"/passbooks/{address}",
            data=json.dumps({"price": 5_000_000}),
            headers=signed(test_auth_headers, AUTHORITY),
        )
        assert response.status_code == 200
        assert json.loads(response.data)["pass_book"]["price"] == 5_000_000

        response = flask_client.delete(
            f"/passbooks/{address}",
            data=json.dumps({"refund_destination": AUTHORITY, "collectible_destination": "returned"}),
            headers=signed(test_auth_headers, AUTHORITY),
        )
        assert response.status_code == 200
        assert json.loads(response.data) == {"address": address, "deleted": True}
        assert flask_client.get(f"/passbooks/{address}").status_code == 404

    def test_edit_by_stranger(self, flask_client, test_auth_headers, listing):
        address = listing(activate=False)
        response = flask_client.patch(
            f"/passbooks/{address}",
            data=json.dumps({"price": 1}),
            headers=signed(test_auth_headers, "stranger"),
        )
        assert response.status_code == 403
        assert json.loads(response.data)["name"] == "InvalidAuthorityKey"


class TestBuyEndpoints:
    """Tests for purchases and the records they touch."""

    def buy(self, client, headers, address, **extra):
        payload = {"buyer": BUYER, "user_token_account": BUYER, **extra}
        return post(client, f"/passbooks/{address}/buy", headers, payload, [BUYER])

    def test_buy(self, flask_client, test_auth_headers, listing, buyer):
        address = listing()
        response = self.buy(flask_client, test_auth_headers, address)
        assert response.status_code == 201

        data = json.loads(response.data)
        assert data["pass_book"]["supply"] == 1
        assert data["trade_history"]["already_bought"] == 1
        assert data["membership"]["state"] == "activated"
        assert data["distribution"]["undisbursed"] == 0
        amounts = {p["recipient"]: p["amount"] for p in data["distribution"]["payments"]}
        assert amounts == {CREATOR_A: PRICE // 2, CREATOR_B: PRICE // 2}

    def test_reads_after_buy(self, flask_client, test_auth_headers, listing, buyer):
        address = listing()
        self.buy(flask_client, test_auth_headers, address)

        history = json.loads(flask_client.get(f"/passbooks/{address}/history/{BUYER}").data)
        assert history["already_bought"] == 1

        store = json.loads(flask_client.get(f"/stores/{AUTHORITY}").data)
        assert store["pass_count"] == 1

        membership = json.loads(flask_client.get(f"/stores/{AUTHORITY}/memberships/{BUYER}").data)
        assert membership["active"] is True

        payout = json.loads(flask_client.get(f"/payouts/{CREATOR_A}/native").data)
        assert payout["balance"] == PRICE // 2

    def test_buy_not_activated(self, flask_client, test_auth_headers, listing, buyer):
        address = listing(activate=False)
        response = self.buy(flask_client, test_auth_headers, address)
        assert response.status_code == 409
        assert json.loads(response.data)["name"] == "PassNotActivated"

    def test_buy_limit_reached(self, flask_client, test_auth_headers, listing, buyer):
        address = listing(access=None, pieces_in_one_wallet=1)
        self.buy(flask_client, test_auth_headers, address)
        response = self.buy(flask_client, test_auth_headers, address)
        assert response.status_code == 409
        assert json.loads(response.data)["category"] == "limit"
        assert json.loads(response.data)["name"] == "UserReachBuyLimit"

    def test_repeat_buys_without_access(self, flask_client, test_auth_headers, listing, buyer):
        address = listing(access=None, pieces_in_one_wallet=3)
        for _ in range(3):
            assert self.buy(flask_client, test_auth_headers, address).status_code == 201
        response = self.buy(flask_client, test_auth_headers, address)
        assert response.status_code == 409
        assert json.loads(response.data)["name"] == "UserReachBuyLimit"

    def test_buy_bad_rates(self, flask_client, test_auth_headers, listing, buyer):
        address = listing()
        response = self.buy(flask_client, test_auth_headers, address, referral_share=101)
        assert response.status_code == 400
        assert json.loads(response.data)["name"] == "WrongReferralShare"

    def test_buy_insufficient_funds(self, flask_client, test_auth_headers, listing, fund):
        address = listing()
        fund(BUYER, 1)
        response = self.buy(flask_client, test_auth_headers, address)
        assert response.status_code == 422
        assert flask_client.get(f"/passbooks/{address}/history/{BUYER}").status_code == 404

    def test_buy_missing_buyer(self, flask_client, test_auth_headers, listing):
        address = listing()
        response = post(
            flask_client, f"/passbooks/{address}/buy", test_auth_headers, {"user_token_account": BUYER}
        )
        assert response.status_code == 400

    def test_use_and_expire_membership(self, flask_client, test_auth_headers, listing, buyer, clock):
        address = listing(max_uses=3)
        self.buy(flask_client, test_auth_headers, address)

        response = post(
            flask_client,
            f"/stores/{AUTHORITY}/memberships/{BUYER}/use",
            test_auth_headers,
            signers=[AUTHORITY],
        )
        assert response.status_code == 200
        assert json.loads(response.data)["uses"] == {"remaining": 2, "total": 3}

        response = post(flask_client, f"/stores/{AUTHORITY}/memberships/{BUYER}/expire", test_auth_headers)
        assert response.status_code == 409
        assert json.loads(response.data)["name"] == "MembershipNotExpired"

        clock.advance(31 * 86400)
        response = post(flask_client, f"/stores/{AUTHORITY}/memberships/{BUYER}/expire", test_auth_headers)
        assert json.loads(response.data)["state"] == "expired"

    def test_withdraw(self, flask_client, test_auth_headers, listing, buyer):
        address = listing()
        self.buy(flask_client, test_auth_headers, address)

        response = post(
            flask_client,
            f"/payouts/{CREATOR_A}/native/withdraw",
            test_auth_headers,
            {"amount": 1_000_000, "destination": CREATOR_A},
            [CREATOR_A],
        )
        assert response.status_code == 200
        assert json.loads(response.data)["balance"] == PRICE // 2 - 1_000_000

        response = post(
            flask_client,
            f"/payouts/{CREATOR_A}/native/withdraw",
            test_auth_headers,
            {"amount": PRICE, "destination": CREATOR_A},
            [CREATOR_A],
        )
        assert response.status_code == 409
        assert json.loads(response.data)["name"] == "InsufficientPayoutBalance"

    @pytest.mark.parametrize(
        "path",
        [
            f"/stores/{AUTHORITY}",
            f"/stores/{AUTHORITY}/memberships/{BUYER}",
            f"/payouts/{CREATOR_A}/native",
        ],
    )
    def test_missing_records(self, flask_client, path):
        assert flask_client.get(path).status_code == 404


class TestInstructionEndpoint:
    """Tests for POST /instructions."""

    def test_activate_by_instruction(self, flask_client, test_auth_headers, listing):
        address = listing(activate=False)
        response = post(
            flask_client,
            "/instructions",
            test_auth_headers,
            {"instruction": "activate_pass_book", "args": {"pass_book": address}},
            [AUTHORITY],
        )
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data["instruction"] == "activate_pass_book"
        assert data["result"]["state"] == "activated"

    def test_buy_by_instruction(self, flask_client, test_auth_headers, listing, buyer):
        address = listing()
        response = post(
            flask_client,
            "/instructions",
            test_auth_headers,
            {
                "instruction": "buy_pass",
                "args": {"pass_book": address, "buyer": BUYER, "user_token_account": BUYER},
            },
            [BUYER],
        )
        assert json.loads(response.data)["result"]["pass_book"]["supply"] == 1

    def test_unknown_instruction(self, flask_client, test_auth_headers):
        response = post(flask_client, "/instructions", test_auth_headers, {"instruction": "burn"})
        assert response.status_code == 400
        assert "Unknown instruction" in json.loads(response.data)["error"]

    def test_missing_args(self, flask_client, test_auth_headers):
        response = post(
            flask_client, "/instructions", test_auth_headers, {"instruction": "activate_pass_book"}
        )
        assert response.status_code == 400
        assert "pass_book" in json.loads(response.data)["error"]


class TestApiKey:
    """Tests for API key enforcement on mutating endpoints."""

    @pytest.fixture
    def auth_on(self, monkeypatch):
        monkeypatch.setattr(api.utils, "API_KEY_REQUIRED", True)
        monkeypatch.setattr(api.utils, "API_KEY", "test-api-key-12345")
        return monkeypatch

    def test_missing_key(self, flask_client, auth_on, listing):
        address = listing()
        response = flask_client.post(f"/passbooks/{address}/deactivate")
        assert response.status_code == 401

    def test_wrong_key(self, flask_client, auth_on, listing):
        address = listing()
        response = flask_client.post(
            f"/passbooks/{address}/deactivate", headers={"X-API-Key": "wrong"}
        )
        assert response.status_code == 403

    def test_valid_key(self, flask_client, auth_on, test_auth_headers, listing):
        address = listing()
        response = post(flask_client, f"/passbooks/{address}/deactivate", test_auth_headers, signers=[AUTHORITY])
        assert response.status_code == 200

    def test_server_key_missing(self, flask_client, auth_on, test_auth_headers, listing):
        auth_on.setattr(api.utils, "API_KEY", None)
        address = listing()
        response = post(flask_client, f"/passbooks/{address}/deactivate", test_auth_headers)
        assert response.status_code == 503

    def test_reads_are_open(self, flask_client, auth_on, listing):
        address = listing()
        assert flask_client.get(f"/passbooks/{address}").status_code == 200


class TestServiceEndpoints:
    """Tests for health, metrics and fallback handlers."""

    def test_health(self, flask_client):
        data = json.loads(flask_client.get("/health").data)
        assert data["status"] == "healthy"
        assert data["checks"]["storage"]["backend"] == "MemoryStorage"
        assert "version" in data

    def test_probes(self, flask_client):
        assert json.loads(flask_client.get("/health/live").data) == {"status": "alive"}
        assert json.loads(flask_client.get("/health/ready").data) == {"status": "ready"}

    def test_prometheus_metrics(self, flask_client, listing):
        listing()
        response = flask_client.get("/metrics")
        assert response.status_code == 200
        text = response.data.decode()
        assert 'passbook_ledger_records{kind="pass_book"} 1' in text
        assert "passbook_operations_total" in text

    def test_json_metrics(self, flask_client):
        data = json.loads(flask_client.get("/metrics/json").data)
        assert data["gauges"]["storage_available"] == 1

    def test_unknown_endpoint(self, flask_client):
        response = flask_client.get("/nope")
        assert response.status_code == 404
        assert json.loads(response.data) == {"error": "Endpoint not found"}

    def test_wrong_method(self, flask_client):
        response = flask_client.put("/passbooks")
        assert response.status_code == 405
        assert json.loads(response.data) == {"error": "Method not allowed"}

    def test_request_id_header(self, flask_client):
        response = flask_client.get("/health", headers={"X-Request-ID": "abc"})
        assert response.headers["X-Request-ID"] == "abc"
