"""
PassBook API Blueprint.

REST endpoints for the PassBook engine:
- PassBook listing, creation, editing, lifecycle and deletion
- Pass purchase
- Store, membership and trade history reads
- Membership redemption and expiry
- Payout reads and withdrawals
- A generic /instructions endpoint taking {"instruction", "args"}

Signers are read from the X-Signers header. Engine errors are turned into
JSON responses by the handlers registered in create_app().
"""

from typing import Any

from flask import Blueprint, jsonify, request

from api.state import get_processor
from api.utils import (
    get_auth_context,
    get_json_body,
    not_found,
    require_api_key,
    validate_json_schema,
)
from instructions import (
    BuyPassArgs,
    DeletePassBookArgs,
    EditPassBookArgs,
    InitPassBookArgs,
    Instruction,
    WithdrawPayoutArgs,
    process_instruction,
)

passbook_bp = Blueprint("passbook", __name__)

INIT_REQUIRED = {
    "authority": str,
    "mint": str,
    "source_token_account": str,
    "name": str,
    "description": str,
    "uri": str,
    "price": int,
    "creators": list,
}
INIT_OPTIONAL = {
    "price_mint": str,
    "mutable": bool,
    "access": int,
    "duration": int,
    "max_supply": int,
    "max_uses": int,
    "blur_hash": str,
    "seller_fee_basis_points": int,
    "pieces_in_one_wallet": int,
    "market_authority": str,
    "referrer": str,
    "referral_end_date": int,
}
EDIT_OPTIONAL = {
    "name": str,
    "description": str,
    "uri": str,
    "price": int,
    "price_mint": str,
    "mutable": bool,
    "blur_hash": str,
}
BUY_REQUIRED = {"buyer": str, "user_token_account": str}
BUY_OPTIONAL = {
    "market_fee_basis_points": int,
    "referral_share": int,
    "referral_kick_back_share": int,
    "store": str,
    "trade_history": str,
    "membership": str,
}


def _bad_request(error: str):
    return jsonify({"error": error}), 400


def _serialize(result: Any) -> Any:
    if result is None or isinstance(result, (str, int)):
        return result
    return result.to_dict()


# ============================================================
# PassBooks
# ============================================================

@passbook_bp.route("/passbooks", methods=["GET"])
def list_pass_books():
    books = get_processor().list_pass_books()
    return jsonify({
        "pass_books": [{"address": address, **book.to_dict()} for address, book in books],
        "count": len(books),
    })


@passbook_bp.route("/passbooks", methods=["POST"])
@require_api_key
def create_pass_book():
    """
    List a new PassBook.

    Request body: InitPassBookArgs fields, creators as
    [{"address": ..., "share": ...}].
    """
    data = get_json_body()
    valid, error = validate_json_schema(data, INIT_REQUIRED, INIT_OPTIONAL)
    if not valid:
        return _bad_request(error)

    processor = get_processor()
    address = processor.init_pass_book(InitPassBookArgs.from_dict(data), get_auth_context())
    return jsonify({
        "address": address,
        "pass_book": processor.get_pass_book(address).to_dict(),
    }), 201


@passbook_bp.route("/passbooks/<address>", methods=["GET"])
def get_pass_book(address: str):
    book = get_processor().get_pass_book(address)
    if book is None:
        return not_found("PassBook", address)
    return jsonify({"address": address, "pass_book": book.to_dict()})


@passbook_bp.route("/passbooks/<address>", methods=["PATCH"])
@require_api_key
def edit_pass_book(address: str):
    data = get_json_body()
    valid, error = validate_json_schema(data, {}, EDIT_OPTIONAL)
    if not valid:
        return _bad_request(error)

    book = get_processor().edit_pass_book(
        address, EditPassBookArgs.from_dict(data), get_auth_context()
    )
    return jsonify({"address": address, "pass_book": book.to_dict()})


@passbook_bp.route("/passbooks/<address>", methods=["DELETE"])
@require_api_key
def delete_pass_book(address: str):
    data = get_json_body()
    valid, error = validate_json_schema(
        data, {"refund_destination": str, "collectible_destination": str}
    )
    if not valid:
        return _bad_request(error)

    get_processor().delete_pass_book(
        address, DeletePassBookArgs.from_dict(data), get_auth_context()
    )
    return jsonify({"address": address, "deleted": True})


@passbook_bp.route("/passbooks/<address>/activate", methods=["POST"])
@require_api_key
def activate_pass_book(address: str):
    book = get_processor().activate_pass_book(address, get_auth_context())
    return jsonify({"address": address, "pass_book": book.to_dict()})


@passbook_bp.route("/passbooks/<address>/deactivate", methods=["POST"])
@require_api_key
def deactivate_pass_book(address: str):
    book = get_processor().deactivate_pass_book(address, get_auth_context())
    return jsonify({"address": address, "pass_book": book.to_dict()})


# ============================================================
# Purchase
# ============================================================

@passbook_bp.route("/passbooks/<address>/buy", methods=["POST"])
@require_api_key
def buy_pass(address: str):
    """
    Buy one pass.

    Request body:
        {
            "buyer": "wallet",
            "user_token_account": "wallet or token account",
            "market_fee_basis_points": 250,    // optional
            "referral_share": 50,              // optional
            "referral_kick_back_share": 0      // optional
        }
    """
    data = get_json_body()
    valid, error = validate_json_schema(data, BUY_REQUIRED, BUY_OPTIONAL)
    if not valid:
        return _bad_request(error)

    result = get_processor().buy_pass(
        address,
        data["buyer"],
        data["user_token_account"],
        BuyPassArgs.from_dict(data),
        get_auth_context(),
        store=data.get("store"),
        trade_history=data.get("trade_history"),
        membership=data.get("membership"),
    )
    return jsonify(result.to_dict()), 201


@passbook_bp.route("/passbooks/<address>/history/<wallet>", methods=["GET"])
def get_trade_history(address: str, wallet: str):
    history = get_processor().get_trade_history(address, wallet)
    if history is None:
        return not_found("TradeHistory", wallet)
    return jsonify(history.to_dict())


# ============================================================
# Stores and Memberships
# ============================================================

@passbook_bp.route("/stores/<authority>", methods=["GET"])
def get_store(authority: str):
    store = get_processor().get_store(authority)
    if store is None:
        return not_found("Store", authority)
    return jsonify(store.to_dict())


@passbook_bp.route("/stores/<authority>/memberships/<wallet>", methods=["GET"])
def get_membership(authority: str, wallet: str):
    processor = get_processor()
    membership = processor.get_membership(authority, wallet)
    if membership is None:
        return not_found("Membership", wallet)
    return jsonify({
        **membership.to_dict(),
        "active": membership.is_active(processor.clock()),
    })


@passbook_bp.route("/stores/<authority>/memberships/<wallet>/use", methods=["POST"])
@require_api_key
def use_membership(authority: str, wallet: str):
    membership = get_processor().use_membership(authority, wallet, get_auth_context())
    return jsonify(membership.to_dict())


@passbook_bp.route("/stores/<authority>/memberships/<wallet>/expire", methods=["POST"])
@require_api_key
def expire_membership(authority: str, wallet: str):
    membership = get_processor().expire_membership(authority, wallet)
    return jsonify(membership.to_dict())


# ============================================================
# Payouts
# ============================================================

@passbook_bp.route("/payouts/<authority>/<mint>", methods=["GET"])
def get_payout(authority: str, mint: str):
    payout = get_processor().get_payout(authority, mint)
    if payout is None:
        return not_found("Payout", f"{authority}/{mint}")
    return jsonify(payout.to_dict())


@passbook_bp.route("/payouts/<authority>/<mint>/withdraw", methods=["POST"])
@require_api_key
def withdraw_payout(authority: str, mint: str):
    data = get_json_body()
    valid, error = validate_json_schema(data, {"amount": int, "destination": str})
    if not valid:
        return _bad_request(error)

    payout = get_processor().withdraw_payout(
        authority, mint, WithdrawPayoutArgs.from_dict(data), get_auth_context()
    )
    return jsonify(payout.to_dict())


# ============================================================
# Generic Instructions
# ============================================================

@passbook_bp.route("/instructions", methods=["POST"])
@require_api_key
def run_instruction():
    """
    Run any instruction by name.

    Request body:
        {"instruction": "buy_pass", "args": {"pass_book": "...", "buyer": "...", ...}}
    """
    data = get_json_body()
    valid, error = validate_json_schema(data, {"instruction": str}, {"args": dict})
    if not valid:
        return _bad_request(error)

    instruction = Instruction.from_dict(data)
    result = process_instruction(get_processor(), instruction, get_auth_context())
    return jsonify({
        "instruction": instruction.type.value,
        "result": _serialize(result),
    })
