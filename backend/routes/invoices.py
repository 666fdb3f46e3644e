"""
Invoice Routes - Flask Blueprint

Invoice listing, manual upload, extraction and pending re-dispatch.
"""

from flask import Blueprint, jsonify, request

from routes.common import error_response, get_owner_id, missing_owner
from services import invoice_service

invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@invoices_bp.route("", methods=["GET"])
def get_invoices():
    """
    Query params:
        owner_id (str): Owner ID
        status (str): 'pending', 'completed' or 'needs_review' (optional)
    """
    owner_id = get_owner_id()
    if not owner_id:
        return missing_owner()

    try:
        return jsonify(invoice_service.get_invoices(owner_id, request.args.get("status")))
    except Exception as e:
        return error_response(e, "List invoices")


@invoices_bp.route("/<int:invoice_id>", methods=["GET"])
def get_invoice(invoice_id):
    owner_id = get_owner_id()
    if not owner_id:
        return missing_owner()

    invoice = invoice_service.get_invoice(owner_id, invoice_id)
    if not invoice:
        return jsonify({"error": "Invoice not found"}), 404
    return jsonify(invoice)


@invoices_bp.route("/<int:invoice_id>", methods=["DELETE"])
def delete_invoice(invoice_id):
    owner_id = get_owner_id()
    if not owner_id:
        return missing_owner()

    try:
        invoice_service.delete_invoice(owner_id, invoice_id)
        return jsonify({"message": "Invoice deleted successfully"})
    except Exception as e:
        return error_response(e, "Delete invoice")


@invoices_bp.route("/upload", methods=["POST"])
def upload_invoice():
    """
    Upload an invoice document (multipart form).

    Form fields:
        owner_id (str): Owner ID
        file: PDF or image

    Returns:
        Created invoice (status pending), or 422 if the PDF is rejected
    """
    owner_id = get_owner_id()
    if not owner_id:
        return missing_owner()

    upload = request.files.get("file")
    if upload is None or not upload.filename:
        return jsonify({"error": "file is required"}), 400

    try:
        invoice = invoice_service.upload_invoice(
            owner_id, upload.filename, upload.read(), upload.mimetype
        )
        return jsonify(invoice), 201
    except Exception as e:
        return error_response(e, "Invoice upload")


@invoices_bp.route("/<int:invoice_id>/analyze", methods=["POST"])
def analyze_invoice(invoice_id):
    """
    Run extraction and duplicate resolution for one invoice.

    Query params:
        async (str): If 'false', runs in-process and returns the outcome
    """
    owner_id = get_owner_id()
    if not owner_id:
        return missing_owner()

    async_mode = request.args.get("async", "true").lower() == "true"

    try:
        if async_mode:
            return jsonify(invoice_service.start_analysis(owner_id, invoice_id)), 202
        return jsonify(invoice_service.run_analysis(owner_id, invoice_id))
    except Exception as e:
        return error_response(e, "Invoice analysis")


@invoices_bp.route("/retry-pending", methods=["POST"])
def retry_pending():
    """Re-queue extraction for the owner's invoices still pending."""
    owner_id = get_owner_id()
    if not owner_id:
        return missing_owner()

    try:
        limit = int(request.args.get("limit", 100))
        return jsonify(invoice_service.retry_pending(owner_id, limit))
    except Exception as e:
        return error_response(e, "Retry pending invoices")
