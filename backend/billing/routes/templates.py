# Overview: Flask API routes for tenant template settings.

# backend/billing/routes/templates.py
"""Template settings, named templates and scenario preferences API routes"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_tenant_context
from ..services import template_service
from ..validation import DocumentError


templates_bp = Blueprint("templates", __name__, url_prefix="/api/template-settings")

KINDS_PATTERN = "<any(receipt, invoice):kind>"


@templates_bp.get(f"/{KINDS_PATTERN}")
@require_tenant_context
def get_template_settings_route(kind: str):
    """Stored settings for one document kind; null when the tenant has none."""
    try:
        row = template_service.get_template_settings(g.org_id, kind)
        return jsonify({"settings": row.to_dict() if row else None}), 200
    except DocumentError as e:
        return jsonify(e.to_dict()), e.http_status


@templates_bp.put(f"/{KINDS_PATTERN}")
@require_tenant_context
def update_template_settings_route(kind: str):
    """
    Create or patch template settings.

    Accepts flat column names or the nested shape returned by GET
    (store_info, address, design, layout).
    """
    try:
        data = request.get_json() or {}
        row = template_service.update_template_settings(
            g.org_id,
            kind,
            data,
            actor_user_id=g.user_id,
        )
        return jsonify({"settings": row.to_dict()}), 200

    except DocumentError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update template settings")
        return jsonify({"error": "Internal server error"}), 500


@templates_bp.get(f"/{KINDS_PATTERN}/resolved")
@require_tenant_context
def resolved_template_route(kind: str):
    """
    Preview the merged company info, design and layout.

    Query params: store_id, scenario, template_id (all optional).
    `sources` names the layer each field came from.
    """
    try:
        resolved = template_service.resolve_template(
            g.org_id,
            kind,
            store_id=request.args.get("store_id", type=int),
            scenario=request.args.get("scenario") or None,
            template_id=request.args.get("template_id", type=int),
        )
        return jsonify(resolved.to_dict()), 200
    except DocumentError as e:
        return jsonify(e.to_dict()), e.http_status


# Named templates


@templates_bp.get(f"/{KINDS_PATTERN}/templates")
@require_tenant_context
def list_templates_route(kind: str):
    try:
        rows = template_service.list_templates(g.org_id, kind)
        return jsonify({"items": [row.to_dict() for row in rows], "count": len(rows)}), 200
    except DocumentError as e:
        return jsonify(e.to_dict()), e.http_status


@templates_bp.post(f"/{KINDS_PATTERN}/templates")
@require_tenant_context
def create_template_route(kind: str):
    """
    Create a named template.

    Body: name (required), template_type, is_default, plus any settings
    field accepted by PUT /<kind>.
    """
    try:
        row = template_service.create_template(
            g.org_id,
            kind,
            request.get_json() or {},
            actor_user_id=g.user_id,
        )
        return jsonify({"template": row.to_dict()}), 201

    except DocumentError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create template")
        return jsonify({"error": "Internal server error"}), 500


@templates_bp.get(f"/{KINDS_PATTERN}/templates/<int:template_id>")
@require_tenant_context
def get_template_route(kind: str, template_id: int):
    try:
        row = template_service.get_template(g.org_id, kind, template_id)
        return jsonify({"template": row.to_dict()}), 200
    except DocumentError as e:
        return jsonify(e.to_dict()), e.http_status


@templates_bp.put(f"/{KINDS_PATTERN}/templates/<int:template_id>")
@require_tenant_context
def update_template_route(kind: str, template_id: int):
    try:
        row = template_service.update_template(
            g.org_id,
            kind,
            template_id,
            request.get_json() or {},
            actor_user_id=g.user_id,
        )
        return jsonify({"template": row.to_dict()}), 200

    except DocumentError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update template %s", template_id)
        return jsonify({"error": "Internal server error"}), 500


@templates_bp.delete(f"/{KINDS_PATTERN}/templates/<int:template_id>")
@require_tenant_context
def delete_template_route(kind: str, template_id: int):
    try:
        template_service.delete_template(g.org_id, kind, template_id)
        return jsonify({"deleted": template_id}), 200
    except DocumentError as e:
        return jsonify(e.to_dict()), e.http_status


@templates_bp.post(f"/{KINDS_PATTERN}/templates/<int:template_id>/default")
@require_tenant_context
def set_default_template_route(kind: str, template_id: int):
    try:
        row = template_service.set_default_template(g.org_id, kind, template_id, actor_user_id=g.user_id)
        return jsonify({"template": row.to_dict()}), 200
    except DocumentError as e:
        return jsonify(e.to_dict()), e.http_status


# Scenario preferences


@templates_bp.get(f"/{KINDS_PATTERN}/preferences")
@require_tenant_context
def get_preferences_route(kind: str):
    try:
        return jsonify({"preferences": template_service.get_template_preferences(g.org_id, kind)}), 200
    except DocumentError as e:
        return jsonify(e.to_dict()), e.http_status


@templates_bp.put(f"/{KINDS_PATTERN}/preferences")
@require_tenant_context
def set_preferences_route(kind: str):
    """Body: {"order": <template id or null>, "subscription": ..., "manual": ...}"""
    try:
        preferences = template_service.set_template_preferences(
            g.org_id,
            kind,
            request.get_json() or {},
            actor_user_id=g.user_id,
        )
        return jsonify({"preferences": preferences}), 200

    except DocumentError as e:
        return jsonify(e.to_dict()), e.http_status
