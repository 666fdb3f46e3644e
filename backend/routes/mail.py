"""
Mail Routes - Flask Blueprint

Mailbox OAuth callbacks, sync, supplier discovery and supplier management.
Routes are thin controllers that delegate to mail_service for business logic.
"""

from flask import Blueprint, jsonify, request

from routes.common import error_response, get_owner_id, missing_owner
from services import mail_service

mail_bp = Blueprint("mail", __name__, url_prefix="/api/mail")


@mail_bp.route("/<provider>/callback", methods=["POST"])
def oauth_callback(provider):
    """
    Complete a Gmail or Outlook OAuth flow.

    Path params:
        provider (str): 'gmail' or 'outlook'

    Request body:
        owner_id (str): Owner ID
        code (str): Authorization code
        redirect_uri (str): Redirect URI used for the authorization request
        code_verifier (str): PKCE verifier (optional)

    Returns:
        Connected mailbox (without tokens)
    """
    owner_id = get_owner_id()
    if not owner_id:
        return missing_owner()

    data = request.get_json(silent=True) or {}
    if not data.get("code") or not data.get("redirect_uri"):
        return jsonify({"error": "code and redirect_uri are required"}), 400

    try:
        mailbox = mail_service.connect_mailbox(
            owner_id,
            provider,
            data["code"],
            data["redirect_uri"],
            data.get("code_verifier"),
        )
        return jsonify(mailbox), 201
    except Exception as e:
        return error_response(e, "Mailbox connect")


@mail_bp.route("/mailboxes", methods=["GET"])
def get_mailboxes():
    owner_id = get_owner_id()
    if not owner_id:
        return missing_owner()

    try:
        return jsonify(mail_service.get_mailboxes(owner_id))
    except Exception as e:
        return error_response(e, "List mailboxes")


@mail_bp.route("/mailboxes/<int:mailbox_id>", methods=["DELETE"])
def disconnect_mailbox(mailbox_id):
    owner_id = get_owner_id()
    if not owner_id:
        return missing_owner()

    try:
        mail_service.disconnect_mailbox(owner_id, mailbox_id)
        return jsonify({"message": "Mailbox disconnected successfully"})
    except Exception as e:
        return error_response(e, "Mailbox disconnect")


@mail_bp.route("/mailboxes/<int:mailbox_id>", methods=["PATCH"])
def update_mailbox(mailbox_id):
    """
    Enable or disable sync for a mailbox.

    Request body:
        sync_enabled (bool)
    """
    owner_id = get_owner_id()
    if not owner_id:
        return missing_owner()

    data = request.get_json(silent=True) or {}
    if "sync_enabled" not in data:
        return jsonify({"error": "sync_enabled is required"}), 400

    try:
        mailbox = mail_service.set_sync_enabled(owner_id, mailbox_id, data["sync_enabled"])
        return jsonify(mailbox)
    except Exception as e:
        return error_response(e, "Mailbox update")


@mail_bp.route("/sync", methods=["POST"])
def start_sync():
    """
    Sync every enabled mailbox of an owner.

    Query params:
        async (str): If 'false', runs in-process and returns the summary
            (default: true, queues a Celery task)

    Request body:
        owner_id (str): Owner ID
        supplier_email (str): Only ingest from this supplier (optional)

    Returns:
        Task details if async, sync summary otherwise
    """
    owner_id = get_owner_id()
    if not owner_id:
        return missing_owner()

    async_mode = request.args.get("async", "true").lower() == "true"
    supplier_email = (request.get_json(silent=True) or {}).get("supplier_email")

    try:
        if async_mode:
            return jsonify(mail_service.start_sync(owner_id, supplier_email)), 202
        return jsonify(mail_service.run_sync(owner_id, supplier_email))
    except Exception as e:
        return error_response(e, "Mailbox sync")


@mail_bp.route("/discover", methods=["POST"])
def discover():
    """
    Scan mailboxes for supplier senders.

    Request body:
        owner_id (str): Owner ID
        lookback_days (int): Override the window (optional)
    """
    owner_id = get_owner_id()
    if not owner_id:
        return missing_owner()

    async_mode = request.args.get("async", "true").lower() == "true"
    lookback_days = (request.get_json(silent=True) or {}).get("lookback_days")

    try:
        if lookback_days is not None:
            lookback_days = int(lookback_days)
        if async_mode:
            return jsonify(mail_service.start_discovery(owner_id, lookback_days)), 202
        return jsonify(mail_service.run_discovery(owner_id, lookback_days))
    except Exception as e:
        return error_response(e, "Supplier discovery")


# ============================================================================
# SUPPLIERS
# ============================================================================


@mail_bp.route("/suppliers", methods=["GET"])
def get_suppliers():
    """
    Query params:
        owner_id (str): Owner ID
        status (str): 'suggested' or 'active' (optional)
    """
    owner_id = get_owner_id()
    if not owner_id:
        return missing_owner()

    try:
        return jsonify(mail_service.get_suppliers(owner_id, request.args.get("status")))
    except Exception as e:
        return error_response(e, "List suppliers")


@mail_bp.route("/suppliers", methods=["POST"])
def add_supplier():
    owner_id = get_owner_id()
    if not owner_id:
        return missing_owner()

    data = request.get_json(silent=True) or {}
    if not data.get("email"):
        return jsonify({"error": "email is required"}), 400

    try:
        result = mail_service.add_supplier(owner_id, data["email"], data.get("label"))
        return jsonify(result), 201 if result["created"] else 200
    except Exception as e:
        return error_response(e, "Add supplier")


@mail_bp.route("/suppliers/<int:supplier_id>/approve", methods=["POST"])
def approve_supplier(supplier_id):
    owner_id = get_owner_id()
    if not owner_id:
        return missing_owner()

    try:
        mail_service.approve_supplier(owner_id, supplier_id)
        return jsonify({"message": "Supplier approved"})
    except Exception as e:
        return error_response(e, "Approve supplier")


@mail_bp.route("/suppliers/<int:supplier_id>", methods=["DELETE"])
def remove_supplier(supplier_id):
    owner_id = get_owner_id()
    if not owner_id:
        return missing_owner()

    try:
        mail_service.remove_supplier(owner_id, supplier_id)
        return jsonify({"message": "Supplier removed"})
    except Exception as e:
        return error_response(e, "Remove supplier")
