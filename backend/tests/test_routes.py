# Overview: Pytest coverage for the document and template settings HTTP API.

"""
API Route Tests

Exercises the Flask blueprints end to end through the test client:
tenant headers, status codes and JSON error bodies.
"""

from billing.time_utils import utcnow
from conftest import manual_ref, order_ref, subscription_ref, tenant_headers


YEAR = utcnow().year


def _generate(client, org, source, kind="receipt", **body):
    return client.post(
        f"/api/documents/{kind}/generate",
        json={"source": source, **body},
        headers=tenant_headers(org),
    )


class TestSystemRoutes:

    def test_health(self, client, db_session, org_a):
        response = client.get("/api/health")
        assert response.status_code == 200
        data = response.get_json()
        assert data["status"] == "healthy"
        assert data["checks"]["database"]["details"]["organizations"] == 1
        assert data["numbering"] == {"receipt_prefix": "REC", "invoice_prefix": "INV"}


class TestTenantContext:

    def test_missing_org_header(self, client, db_session):
        response = client.get("/api/documents/receipt")
        assert response.status_code == 401

    def test_malformed_org_header(self, client, db_session):
        response = client.get("/api/documents/receipt", headers={"X-Org-Id": "acme"})
        assert response.status_code == 401

    def test_unknown_org(self, client, db_session):
        response = client.get("/api/documents/receipt", headers={"X-Org-Id": "999"})
        assert response.status_code == 403

    def test_inactive_org(self, client, db_session, org_a):
        org_a.is_active = False
        db_session.commit()
        response = client.get("/api/documents/receipt", headers=tenant_headers(org_a))
        assert response.status_code == 403

    def test_unknown_kind_is_404(self, client, db_session, org_a):
        response = client.get("/api/documents/quote", headers=tenant_headers(org_a))
        assert response.status_code == 404


class TestGenerateRoutes:

    def test_generate_receipt(self, client, db_session, org_a, make_order):
        response = _generate(client, org_a, order_ref(make_order()))
        assert response.status_code == 201
        receipt = response.get_json()["receipt"]
        assert receipt["document_number"] == f"REC-{YEAR}-0001"
        assert receipt["total_amount"] == 27.5
        assert receipt["created_by_user_id"] == 7
        assert receipt["company_info"]["name"] == "Acme Online"
        assert len(receipt["lines"]) == 2

    def test_generate_subscription_invoice(self, client, db_session, org_a, subscription_payment):
        response = _generate(
            client,
            org_a,
            subscription_ref(*subscription_payment),
            kind="invoice",
            terms="Due on receipt",
        )
        assert response.status_code == 201
        invoice = response.get_json()["invoice"]
        assert invoice["document_number"] == f"INV-{YEAR}-0001"
        assert invoice["terms"] == "Due on receipt"
        assert invoice["due_date"].endswith("Z")

    def test_missing_source(self, client, db_session, org_a):
        response = client.post("/api/documents/receipt/generate", json={}, headers=tenant_headers(org_a))
        assert response.status_code == 400
        assert response.get_json()["details"] == {"field": "source"}

    def test_missing_order_is_404(self, client, db_session, org_a):
        response = _generate(client, org_a, {"scenario": "order", "order_id": 99999})
        assert response.status_code == 404
        assert response.get_json()["code"] == "not_found"

    def test_validation_error_lists_fields(self, client, db_session, org_a, make_order):
        response = _generate(client, org_a, order_ref(make_order(email=None)))
        assert response.status_code == 400
        body = response.get_json()
        assert body["code"] == "validation_error"
        assert "customer_email" in body["details"]["fields"]

    def test_bad_store_id(self, client, db_session, org_a, make_order):
        response = _generate(client, org_a, order_ref(make_order()), store_id="abc")
        assert response.status_code == 400
        assert response.get_json()["details"] == {"field": "store_id"}

    def test_bulk(self, client, db_session, org_a, make_order):
        sources = [order_ref(make_order()), {"scenario": "order", "order_id": 99999}]
        response = client.post(
            "/api/documents/receipt/bulk",
            json={"sources": sources},
            headers=tenant_headers(org_a),
        )
        assert response.status_code == 200
        data = response.get_json()
        assert data["generated"] == 1
        assert data["failed"] == 1
        assert data["results"][1]["status"] == "skipped"
        assert data["results"][1]["code"] == "not_found"


class TestManualCreateRoutes:

    def test_create_manual_receipt(self, client, db_session, org_a, store_a):
        body = manual_ref()
        body.pop("scenario")
        response = client.post("/api/documents/receipt", json=body, headers=tenant_headers(org_a))
        assert response.status_code == 201
        receipt = response.get_json()["receipt"]
        assert receipt["document_number"] == f"REC-{YEAR}-0001"
        assert receipt["scenario"] == "manual"
        assert receipt["store_id"] == store_a.id
        assert receipt["total_amount"] == 27.5

    def test_create_manual_invoice_requires_store(self, client, db_session, org_a, store_a):
        response = client.post(
            "/api/documents/invoice",
            json=manual_ref(payment_method=None, notes="Thanks"),
            headers=tenant_headers(org_a),
        )
        assert response.status_code == 400
        assert response.get_json()["details"] == {"scenario": "manual", "fields": ["store_id"]}

    def test_sub_cent_price_is_400(self, client, db_session, org_a, store_a):
        lines = [{"name": "Sticker", "quantity": 3, "unit_price": "0.335"}]
        response = client.post(
            "/api/documents/receipt",
            json=manual_ref(lines=lines, total_amount="1.01", tax_amount="0"),
            headers=tenant_headers(org_a),
        )
        assert response.status_code == 400
        body = response.get_json()
        assert body["details"]["field"] == "lines[0].unit_price"
        assert "malformed monetary value" in body["error"]


class TestDocumentRoutes:

    def test_list_and_get(self, client, db_session, org_a, make_order):
        created = _generate(client, org_a, order_ref(make_order())).get_json()["receipt"]
        _generate(client, org_a, order_ref(make_order()))

        listing = client.get("/api/documents/receipt?limit=1", headers=tenant_headers(org_a))
        assert listing.status_code == 200
        data = listing.get_json()
        assert data["count"] == 2
        assert len(data["items"]) == 1
        assert "lines" not in data["items"][0]

        detail = client.get(f"/api/documents/receipt/{created['id']}", headers=tenant_headers(org_a))
        assert detail.status_code == 200
        assert detail.get_json()["receipt"]["document_number"] == created["document_number"]

    def test_list_rejects_bad_date(self, client, db_session, org_a):
        response = client.get("/api/documents/receipt?from_date=yesterday", headers=tenant_headers(org_a))
        assert response.status_code == 400

    def test_cross_tenant_get_is_404(self, client, db_session, org_a, org_b, make_order):
        created = _generate(client, org_a, order_ref(make_order())).get_json()["receipt"]
        response = client.get(f"/api/documents/receipt/{created['id']}", headers=tenant_headers(org_b))
        assert response.status_code == 404

    def test_refund_twice(self, client, db_session, org_a, make_order):
        created = _generate(client, org_a, order_ref(make_order())).get_json()["receipt"]
        url = f"/api/documents/receipt/{created['id']}/refund"

        first = client.post(url, json={"reason": "Damaged"}, headers=tenant_headers(org_a))
        assert first.status_code == 200
        assert first.get_json()["receipt"]["refund_amount"] == 27.5

        second = client.post(url, json={}, headers=tenant_headers(org_a))
        assert second.status_code == 409
        body = second.get_json()
        assert body["code"] == "conflict"
        assert body["details"]["document"]["status"] == "refunded"
        assert body["details"]["document"]["refund_amount"] == 27.5

    def test_cancel(self, client, db_session, org_a, make_order):
        created = _generate(client, org_a, order_ref(make_order())).get_json()["receipt"]
        response = client.post(
            f"/api/documents/receipt/{created['id']}/cancel",
            json={"reason": "Duplicate"},
            headers=tenant_headers(org_a),
        )
        assert response.status_code == 200
        assert response.get_json()["receipt"]["status"] == "cancelled"

    def test_update_lines(self, client, db_session, org_a, make_order):
        created = _generate(client, org_a, order_ref(make_order())).get_json()["receipt"]
        response = client.put(
            f"/api/documents/receipt/{created['id']}/lines",
            json={"lines": [{"name": "Widget", "quantity": 1, "unit_price": "10.00"}], "tax_amount": "1.00"},
            headers=tenant_headers(org_a),
        )
        assert response.status_code == 200
        receipt = response.get_json()["receipt"]
        assert receipt["subtotal"] == 10.0
        assert receipt["total_amount"] == 11.0
        assert len(receipt["lines"]) == 1

    def test_email_request(self, client, db_session, org_a, make_order):
        created = _generate(client, org_a, order_ref(make_order())).get_json()["receipt"]
        response = client.post(
            f"/api/documents/receipt/{created['id']}/email",
            json={},
            headers=tenant_headers(org_a),
        )
        assert response.status_code == 202
        recipient = response.get_json()["recipient"]
        assert recipient["email"] == "jane@example.test"
        assert recipient["status"] == "pending"


class TestTemplateRoutes:

    def test_settings_roundtrip_and_resolved(self, client, db_session, org_a, store_a):
        headers = tenant_headers(org_a)

        assert client.get("/api/template-settings/receipt", headers=headers).get_json() == {"settings": None}

        update = client.put(
            "/api/template-settings/receipt",
            json={"store_info": {"name": "Acme Corp"}, "design": {"primary_color": "#ff0000"}},
            headers=headers,
        )
        assert update.status_code == 200

        resolved = client.get(f"/api/template-settings/receipt/resolved?store_id={store_a.id}", headers=headers)
        assert resolved.status_code == 200
        data = resolved.get_json()
        assert data["company_info"]["name"] == "Acme Corp"
        assert data["company_info"]["website"] == "https://shop.acme.test"
        assert data["design"]["primary_color"] == "#ff0000"
        assert data["sources"]["name"] == "TENANT"
        assert data["sources"]["website"] == "STORE"

    def test_invalid_color(self, client, db_session, org_a):
        response = client.put(
            "/api/template-settings/invoice",
            json={"primary_color": "red"},
            headers=tenant_headers(org_a),
        )
        assert response.status_code == 400
        assert response.get_json()["details"] == {"field": "primary_color"}

    def test_named_templates_and_preferences(self, client, db_session, org_a, store_a):
        headers = tenant_headers(org_a)
        base = "/api/template-settings/receipt"

        standard = client.post(f"{base}/templates", json={"name": "Standard", "store_name": "Acme"}, headers=headers)
        assert standard.status_code == 201
        assert standard.get_json()["template"]["is_default"] is True
        online = client.post(f"{base}/templates", json={"name": "Online", "store_name": "Acme Web"}, headers=headers)
        online_id = online.get_json()["template"]["id"]

        duplicate = client.post(f"{base}/templates", json={"name": "Online"}, headers=headers)
        assert duplicate.status_code == 409

        listing = client.get(f"{base}/templates", headers=headers).get_json()
        assert listing["count"] == 2

        prefs = client.put(f"{base}/preferences", json={"order": online_id}, headers=headers)
        assert prefs.status_code == 200
        assert prefs.get_json()["preferences"]["order"]["template_id"] == online_id

        resolved = client.get(f"{base}/resolved?scenario=order", headers=headers).get_json()
        assert resolved["company_info"]["name"] == "Acme Web"
        assert resolved["template_id"] == online_id

        made_default = client.post(f"{base}/templates/{online_id}/default", headers=headers)
        assert made_default.get_json()["template"]["is_default"] is True

        deleted = client.delete(f"{base}/templates/{online_id}", headers=headers)
        assert deleted.status_code == 200
        assert client.get(f"{base}/templates/{online_id}", headers=headers).status_code == 404
        assert client.get(f"{base}/preferences", headers=headers).get_json()["preferences"]["order"] is None

    def test_other_tenant_cannot_touch_template(self, client, db_session, org_a, org_b):
        created = client.post(
            "/api/template-settings/receipt/templates",
            json={"name": "Standard"},
            headers=tenant_headers(org_a),
        ).get_json()["template"]
        response = client.delete(
            f"/api/template-settings/receipt/templates/{created['id']}",
            headers=tenant_headers(org_b),
        )
        assert response.status_code == 404


class TestCors:

    def test_configured_origin_gets_headers(self, client, db_session):
        response = client.get("/api/health", headers={"Origin": "https://admin.acme.test"})
        assert response.headers["Access-Control-Allow-Origin"] == "https://admin.acme.test"
        assert "X-Org-Id" in response.headers["Access-Control-Allow-Headers"]

    def test_unlisted_origin_gets_none(self, client, db_session):
        response = client.get("/api/health", headers={"Origin": "http://localhost:5173"})
        assert "Access-Control-Allow-Origin" not in response.headers
