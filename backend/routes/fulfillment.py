"""
Fulfillment Routes - Flask Blueprint

Seller authorization, shipment and claim sync, and reconciliation data.
Routes are thin controllers that delegate to fulfillment_service.
"""

from flask import Blueprint, jsonify, request

from routes.common import error_response, get_owner_id, missing_owner
from services import fulfillment_service

fulfillment_bp = Blueprint("fulfillment", __name__, url_prefix="/api/fulfillment")


@fulfillment_bp.route("/callback", methods=["POST"])
def oauth_callback():
    """
    Complete the seller authorization flow.

    Request body:
        owner_id (str): Owner ID
        code (str): spapi_oauth_code
        redirect_uri (str): Redirect URI
        marketplace_id (str): Marketplace (optional, default US)
    """
    owner_id = get_owner_id()
    if not owner_id:
        return missing_owner()

    data = request.get_json(silent=True) or {}
    if not data.get("code") or not data.get("redirect_uri"):
        return jsonify({"error": "code and redirect_uri are required"}), 400

    try:
        status = fulfillment_service.connect(
            owner_id, data["code"], data["redirect_uri"], data.get("marketplace_id")
        )
        return jsonify(status), 201
    except Exception as e:
        return error_response(e, "Fulfillment connect")


@fulfillment_bp.route("/connection", methods=["GET"])
def get_connection():
    owner_id = get_owner_id()
    if not owner_id:
        return missing_owner()

    try:
        return jsonify(fulfillment_service.get_connection_status(owner_id))
    except Exception as e:
        return error_response(e, "Fulfillment connection")


@fulfillment_bp.route("/sync/shipments", methods=["POST"])
def sync_shipments():
    """
    Sync inbound shipments and derive discrepancies.

    Query params:
        async (str): If 'false', runs in-process and returns the summary
    """
    owner_id = get_owner_id()
    if not owner_id:
        return missing_owner()

    async_mode = request.args.get("async", "true").lower() == "true"

    try:
        if async_mode:
            return jsonify(fulfillment_service.start_shipment_sync(owner_id)), 202
        return jsonify(fulfillment_service.run_shipment_sync(owner_id))
    except Exception as e:
        return error_response(e, "Shipment sync")


@fulfillment_bp.route("/sync/claims", methods=["POST"])
def sync_claims():
    """
    Pull the reimbursements report.

    In-process runs block while the report builds (poll interval x attempts).
    """
    owner_id = get_owner_id()
    if not owner_id:
        return missing_owner()

    async_mode = request.args.get("async", "true").lower() == "true"

    try:
        if async_mode:
            return jsonify(fulfillment_service.start_claim_sync(owner_id)), 202
        return jsonify(fulfillment_service.run_claim_sync(owner_id))
    except Exception as e:
        return error_response(e, "Claim sync")


@fulfillment_bp.route("/shipments", methods=["GET"])
def get_shipments():
    owner_id = get_owner_id()
    if not owner_id:
        return missing_owner()

    try:
        return jsonify(fulfillment_service.get_shipments(owner_id))
    except Exception as e:
        return error_response(e, "List shipments")


@fulfillment_bp.route("/discrepancies", methods=["GET"])
def get_discrepancies():
    owner_id = get_owner_id()
    if not owner_id:
        return missing_owner()

    try:
        return jsonify(
            fulfillment_service.get_discrepancies(owner_id, request.args.get("status"))
        )
    except Exception as e:
        return error_response(e, "List discrepancies")


@fulfillment_bp.route("/discrepancies/<int:discrepancy_id>/resolve", methods=["POST"])
def resolve_discrepancy(discrepancy_id):
    owner_id = get_owner_id()
    if not owner_id:
        return missing_owner()

    try:
        fulfillment_service.resolve_discrepancy(owner_id, discrepancy_id)
        return jsonify({"message": "Discrepancy resolved"})
    except Exception as e:
        return error_response(e, "Resolve discrepancy")


@fulfillment_bp.route("/claims", methods=["GET"])
def get_claims():
    owner_id = get_owner_id()
    if not owner_id:
        return missing_owner()

    try:
        return jsonify(fulfillment_service.get_claims(owner_id))
    except Exception as e:
        return error_response(e, "List claims")
