# Overview: HTTP tests for checkout, sale reads, products and branch status endpoints.

"""
Checkout API Tests

Exercises the JSON surface end to end through the Flask test client:
status codes, error payloads with details, and scoping of reads.
"""

import logging

from branchpos.models import Product, Sale


class TestCheckoutEndpoint:

    def test_checkout_creates_sale(self, client, db_session, cashier_a1, branch_a1, sugar_a1, bread_a1, login_headers):
        response = client.post(
            '/api/sales',
            json={
                "lines": [
                    {"product_id": sugar_a1.id, "quantity": 2},
                    {"product_id": bread_a1.id, "quantity": 1},
                ],
                "payment_method": "Mobile",
                "customer_ref": "0712000000",
            },
            headers=login_headers(cashier_a1),
        )

        assert response.status_code == 201
        sale = response.get_json()["sale"]
        assert sale["receipt_number"] == "R-000001"
        assert sale["branch_id"] == branch_a1.id
        assert sale["staff_id"] == cashier_a1.id
        assert sale["total_cents"] == 3650
        assert sale["payment_method"] == "Mobile"
        assert [line["quantity"] for line in sale["lines"]] == [2, 1]
        assert db_session.get(Product, sugar_a1.id).stock_quantity == 8

    def test_insufficient_stock_returns_409_with_details(self, client, db_session, cashier_a1, sugar_a1, bread_a1, login_headers):
        response = client.post(
            '/api/sales',
            json={"lines": [
                {"product_id": sugar_a1.id, "quantity": 1},
                {"product_id": bread_a1.id, "quantity": 6},
            ]},
            headers=login_headers(cashier_a1),
        )

        assert response.status_code == 409
        items = response.get_json()["details"]["items"]
        assert items == [{
            "product_id": bread_a1.id,
            "product_name": "Bread 400g",
            "available": 5,
            "requested": 6,
        }]
        assert db_session.get(Product, sugar_a1.id).stock_quantity == 10
        assert db_session.query(Sale).count() == 0

    def test_unknown_product_is_bad_request_and_warned(self, client, db_session, cashier_a1, sugar_a1, login_headers, caplog):
        with caplog.at_level(logging.WARNING, logger="branchpos"):
            response = client.post(
                '/api/sales',
                json={"lines": [{"product_id": 999999, "quantity": 1}]},
                headers=login_headers(cashier_a1),
            )
        assert response.status_code == 400
        warnings = [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]
        assert any("999999" in message for message in warnings)

    def test_empty_lines_rejected(self, client, db_session, cashier_a1, branch_a1, login_headers):
        response = client.post('/api/sales', json={"lines": []}, headers=login_headers(cashier_a1))
        assert response.status_code == 400

    def test_cashier_cannot_sell_for_other_branch(self, client, db_session, cashier_a1, branch_a2, sugar_a2, login_headers, caplog):
        with caplog.at_level(logging.WARNING, logger="branchpos"):
            response = client.post(
                '/api/sales',
                json={"branch_id": branch_a2.id, "lines": [{"product_id": sugar_a2.id, "quantity": 1}]},
                headers=login_headers(cashier_a1),
            )
        assert response.status_code == 403
        assert any(
            r.levelno == logging.WARNING and "Scope violation" in r.getMessage() for r in caplog.records
        )
        assert db_session.get(Product, sugar_a2.id).stock_quantity == 8

    def test_owner_must_name_branch(self, client, db_session, owner_a, sugar_a1, login_headers):
        response = client.post(
            '/api/sales',
            json={"lines": [{"product_id": sugar_a1.id, "quantity": 1}]},
            headers=login_headers(owner_a),
        )
        assert response.status_code == 400

    def test_accountant_denied(self, client, db_session, accountant_a, branch_a1, sugar_a1, login_headers):
        response = client.post(
            '/api/sales',
            json={"branch_id": branch_a1.id, "lines": [{"product_id": sugar_a1.id, "quantity": 1}]},
            headers=login_headers(accountant_a),
        )
        assert response.status_code == 403
        assert response.get_json()["error"] == "Permission denied"


class TestSaleReads:

    def _sell(self, client, headers, product, branch_id=None):
        body = {"lines": [{"product_id": product.id, "quantity": 1}]}
        if branch_id is not None:
            body["branch_id"] = branch_id
        response = client.post('/api/sales', json=body, headers=headers)
        assert response.status_code == 201
        return response.get_json()["sale"]

    def test_listing_is_scoped(self, client, db_session, owner_a, cashier_a1, cashier_a2, sugar_a1, sugar_a2, login_headers):
        a1_headers = login_headers(cashier_a1)
        a2_headers = login_headers(cashier_a2)
        self._sell(client, a1_headers, sugar_a1)
        self._sell(client, a2_headers, sugar_a2)

        owner_view = client.get('/api/sales', headers=login_headers(owner_a)).get_json()
        cashier_view = client.get('/api/sales', headers=a1_headers).get_json()

        assert owner_view["count"] == 2
        assert cashier_view["count"] == 1
        assert cashier_view["sales"][0]["staff_id"] == cashier_a1.id
        assert "lines" not in cashier_view["sales"][0]

    def test_foreign_sale_reads_as_not_found(self, client, db_session, cashier_a1, cashier_a2, sugar_a2, login_headers, caplog):
        sale = self._sell(client, login_headers(cashier_a2), sugar_a2)

        with caplog.at_level(logging.WARNING, logger="branchpos"):
            response = client.get(f'/api/sales/{sale["id"]}', headers=login_headers(cashier_a1))
        assert response.status_code == 404
        assert any(f"/api/sales/{sale['id']}" in r.getMessage() for r in caplog.records)

    def test_other_tenant_sale_not_found(self, client, db_session, owner_a, cashier_b1, sugar_b1, login_headers):
        sale = self._sell(client, login_headers(cashier_b1), sugar_b1)

        response = client.get(f'/api/sales/{sale["id"]}', headers=login_headers(owner_a))
        assert response.status_code == 404

    def test_sale_detail_includes_lines(self, client, db_session, manager_a1, cashier_a1, sugar_a1, login_headers):
        sale = self._sell(client, login_headers(cashier_a1), sugar_a1)

        response = client.get(f'/api/sales/{sale["id"]}', headers=login_headers(manager_a1))
        assert response.status_code == 200
        assert response.get_json()["sale"]["lines"][0]["unit_price_cents"] == 1500

    def test_bad_date_filter_rejected(self, client, db_session, owner_a, login_headers):
        response = client.get('/api/sales?start=yesterday', headers=login_headers(owner_a))
        assert response.status_code == 400


class TestProductEndpoints:

    def test_manager_creates_product_with_opening_stock(self, client, db_session, manager_a1, branch_a1, login_headers):
        response = client.post(
            '/api/products',
            json={"sku": "MILK-500ML", "name": "Milk 500ml", "retail_price_cents": 650,
                  "unit_cost_cents": 500, "opening_stock": 24},
            headers=login_headers(manager_a1),
        )

        assert response.status_code == 201
        product = response.get_json()["product"]
        assert product["branch_id"] == branch_a1.id
        assert product["stock_quantity"] == 24

    def test_duplicate_sku_conflicts(self, client, db_session, manager_a1, sugar_a1, login_headers):
        response = client.post(
            '/api/products',
            json={"sku": sugar_a1.sku, "name": "Sugar again", "retail_price_cents": 1500},
            headers=login_headers(manager_a1),
        )
        assert response.status_code == 409

    def test_cashier_cannot_create_product(self, client, db_session, cashier_a1, branch_a1, login_headers):
        response = client.post(
            '/api/products',
            json={"sku": "X", "name": "X", "retail_price_cents": 100},
            headers=login_headers(cashier_a1),
        )
        assert response.status_code == 403

    def test_receive_stock(self, client, db_session, manager_a1, bread_a1, login_headers):
        response = client.post(
            f'/api/products/{bread_a1.id}/receive',
            json={"quantity": 12, "note": "Morning delivery"},
            headers=login_headers(manager_a1),
        )

        assert response.status_code == 201
        body = response.get_json()
        assert body["stock_quantity"] == 17
        assert body["movement"]["kind"] == "RECEIVE"
        assert body["movement"]["quantity_delta"] == 12

    def test_receive_for_other_branch_not_found(self, client, db_session, manager_a1, sugar_a2, login_headers):
        response = client.post(
            f'/api/products/{sugar_a2.id}/receive',
            json={"quantity": 1},
            headers=login_headers(manager_a1),
        )
        assert response.status_code == 404

    def test_low_stock_after_sale(self, client, db_session, cashier_a1, sugar_a1, bread_a1, login_headers):
        headers = login_headers(cashier_a1)
        assert client.get('/api/products/low-stock', headers=headers).get_json()["count"] == 0

        client.post('/api/sales', json={"lines": [{"product_id": bread_a1.id, "quantity": 1}]}, headers=headers)

        body = client.get('/api/products/low-stock', headers=headers).get_json()
        assert body["count"] == 1
        assert body["items"][0]["id"] == bread_a1.id

    def test_product_listing_scoped_to_branch(self, client, db_session, cashier_a1, sugar_a1, sugar_a2, login_headers):
        body = client.get('/api/products', headers=login_headers(cashier_a1)).get_json()
        assert [p["id"] for p in body["items"]] == [sugar_a1.id]

    def test_price_edit_at_closed_branch_conflicts(self, client, db_session, owner_a, branch_a1, sugar_a1, login_headers):
        headers = login_headers(owner_a)
        client.post(f'/api/branches/{branch_a1.id}/deactivate', headers=headers)

        response = client.patch(f'/api/products/{sugar_a1.id}', json={"retail_price_cents": 1600}, headers=headers)
        assert response.status_code == 409
        assert response.get_json()["details"]["branch_id"] == branch_a1.id
        assert db_session.get(Product, sugar_a1.id).retail_price_cents == 1500

        client.post(f'/api/branches/{branch_a1.id}/reactivate', headers=headers)
        response = client.patch(f'/api/products/{sugar_a1.id}', json={"retail_price_cents": 1600}, headers=headers)
        assert response.status_code == 200
        assert response.get_json()["product"]["retail_price_cents"] == 1600


class TestBranchStatusEndpoints:

    def test_owner_deactivates_branch_and_sales_stop(self, client, db_session, owner_a, cashier_a1, branch_a1, sugar_a1, login_headers):
        cashier_headers = login_headers(cashier_a1)

        response = client.post(f'/api/branches/{branch_a1.id}/deactivate', headers=login_headers(owner_a))
        assert response.status_code == 200
        assert response.get_json()["branch"]["status"] == "inactive"

        blocked = client.post(
            '/api/sales',
            json={"lines": [{"product_id": sugar_a1.id, "quantity": 1}]},
            headers=cashier_headers,
        )
        assert blocked.status_code == 403
        assert blocked.get_json()["state"] == "BRANCH_CLOSED_BLOCKED"

    def test_owner_checkout_at_closed_branch_conflicts(self, client, db_session, owner_a, branch_a1, sugar_a1, login_headers):
        headers = login_headers(owner_a)
        client.post(f'/api/branches/{branch_a1.id}/deactivate', headers=headers)

        response = client.post(
            '/api/sales',
            json={"branch_id": branch_a1.id, "lines": [{"product_id": sugar_a1.id, "quantity": 1}]},
            headers=headers,
        )
        assert response.status_code == 409
        assert db_session.get(Product, sugar_a1.id).stock_quantity == 10

    def test_deactivate_twice_conflicts(self, client, db_session, owner_a, branch_a1, login_headers):
        headers = login_headers(owner_a)
        assert client.post(f'/api/branches/{branch_a1.id}/deactivate', headers=headers).status_code == 200
        assert client.post(f'/api/branches/{branch_a1.id}/deactivate', headers=headers).status_code == 409

    def test_manager_cannot_change_status(self, client, db_session, manager_a1, branch_a1, login_headers):
        response = client.post(f'/api/branches/{branch_a1.id}/deactivate', headers=login_headers(manager_a1))
        assert response.status_code == 403

    def test_other_tenant_branch_not_found(self, client, db_session, owner_a, branch_b1, login_headers):
        response = client.post(f'/api/branches/{branch_b1.id}/deactivate', headers=login_headers(owner_a))
        assert response.status_code == 404
