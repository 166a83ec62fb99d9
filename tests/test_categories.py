from datetime import date

import pytest

from budget_api import crud, models


def set_budget(client, headers, name="food", month=6, year=2024, amount=50000):
    response = client.post(
        "/api/v1/category/create",
        json={"name": name, "month": month, "year": year, "amount": amount},
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()


def fetch_category(client, headers, category_id, month, year):
    return client.get(
        f"/api/v1/category/{category_id}",
        params={"month": month, "year": year},
        headers=headers,
    )


class TestBudgetResolution:
    """Which budget row applies to a category for a given month."""

    def test_exact_period_match(self, client, auth_headers):
        created = set_budget(client, auth_headers)
        category_id = created["data_category"]["id"]

        response = fetch_category(client, auth_headers, category_id, 6, 2024)
        assert response.status_code == 200
        body = response.json()
        assert body["data_category"]["name"] == "food"
        assert body["data_budget"]["amount"] == 50000
        assert (body["data_budget"]["month"], body["data_budget"]["year"]) == (6, 2024)

    def test_falls_back_to_latest_budget_when_period_has_none(self, client, auth_headers):
        category_id = set_budget(client, auth_headers)["data_category"]["id"]

        body = fetch_category(client, auth_headers, category_id, 7, 2024).json()
        assert body["data_budget"]["amount"] == 50000
        assert body["data_budget"]["month"] == 6

    def test_fallback_uses_most_recently_created_row(self, client, auth_headers):
        category_id = set_budget(client, auth_headers, month=6, amount=50000)["data_category"]["id"]
        set_budget(client, auth_headers, month=8, amount=70000)

        body = fetch_category(client, auth_headers, category_id, 7, 2024).json()
        assert body["data_budget"]["amount"] == 70000

    def test_latest_row_for_same_period_wins(self, client, auth_headers):
        category_id = set_budget(client, auth_headers, amount=50000)["data_category"]["id"]
        set_budget(client, auth_headers, amount=65000)
        set_budget(client, auth_headers, month=5, amount=10000)

        body = fetch_category(client, auth_headers, category_id, 6, 2024).json()
        assert body["data_budget"]["amount"] == 65000

    def test_category_without_budget_returns_zero_budget(self, client, register, db_session):
        user, headers = register()
        category = crud.find_or_create_category(db_session, user["id"], "savings")

        response = fetch_category(client, headers, category.id, 6, 2024)
        assert response.status_code == 200
        budget = response.json()["data_budget"]
        assert budget["id"] == 0
        assert budget["amount"] == 0
        assert budget["category_id"] == category.id

    def test_defaults_to_current_month(self, client, auth_headers):
        today = date.today()
        created = set_budget(client, auth_headers, month=today.month, year=today.year, amount=1234)

        response = client.get(
            f"/api/v1/category/{created['data_category']['id']}", headers=auth_headers
        )
        assert response.json()["data_budget"]["amount"] == 1234


class TestSetBudget:
    def test_name_is_normalised_and_category_reused(self, client, register, db_session):
        user, headers = register()
        first = set_budget(client, headers, name="Food")
        second = set_budget(client, headers, name="  FOOD ", month=7, amount=60000)

        assert first["data_category"]["id"] == second["data_category"]["id"]
        assert second["data_category"]["name"] == "food"
        budgets = db_session.query(models.Budget).filter_by(user_id=user["id"]).all()
        assert sorted(b.amount for b in budgets) == [50000, 60000]

    def test_budget_rows_are_appended_not_overwritten(self, client, register, db_session):
        user, headers = register()
        set_budget(client, headers, amount=50000)
        set_budget(client, headers, amount=50000)
        assert db_session.query(models.Budget).filter_by(user_id=user["id"]).count() == 2

    def test_zero_amount_budget_is_allowed(self, client, auth_headers):
        body = set_budget(client, auth_headers, amount=0)
        assert body["data_budget"]["amount"] == 0
        assert body["data_budget"]["id"] > 0

    @pytest.mark.parametrize(
        "payload",
        [
            {"name": "food", "month": 13, "year": 2024, "amount": 100},
            {"name": "food", "month": 0, "year": 2024, "amount": 100},
            {"name": "food", "month": 6, "year": 2024, "amount": -1},
            {"name": "   ", "month": 6, "year": 2024, "amount": 100},
            {"month": 6, "year": 2024, "amount": 100},
        ],
    )
    def test_invalid_payload(self, client, auth_headers, payload):
        response = client.post("/api/v1/category/create", json=payload, headers=auth_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "Validation failed"

    def test_requires_authentication(self, client):
        response = client.post(
            "/api/v1/category/create",
            json={"name": "food", "month": 6, "year": 2024, "amount": 100},
        )
        assert response.status_code == 401

    def test_losing_insert_race_reuses_existing_row(self, db_session, register, monkeypatch):
        user, _ = register()
        existing = crud.find_or_create_category(db_session, user["id"], "rent")
        existing_id = existing.id

        real_lookup = crud.get_category_by_name
        calls = []

        def stale_lookup(db, user_id, name):
            # the first lookup misses, as if another request inserted concurrently
            calls.append(name)
            if len(calls) == 1:
                return None
            return real_lookup(db, user_id, name)

        monkeypatch.setattr(crud, "get_category_by_name", stale_lookup)
        category = crud.find_or_create_category(db_session, user["id"], "rent")
        assert category.id == existing_id
        assert len(calls) == 2
        assert db_session.query(models.Category).filter_by(user_id=user["id"]).count() == 1


class TestCategoryListing:
    def test_sorted_by_name_and_scoped_to_user(self, client, register):
        _, budi = register(email="budi@example.com")
        _, siti = register(email="siti@example.com", name="Siti Aminah")
        for name in ("transport", "food", "rent"):
            set_budget(client, budi, name=name)
        set_budget(client, siti, name="groceries")

        response = client.get("/api/v1/category", headers=budi)
        assert response.status_code == 200
        assert [c["name"] for c in response.json()["data"]] == ["food", "rent", "transport"]


class TestCategoryUpdate:
    def test_update_appends_budget_for_path_category(self, client, auth_headers):
        category_id = set_budget(client, auth_headers)["data_category"]["id"]
        response = client.post(
            f"/api/v1/category/update/{category_id}",
            json={"name": "food", "month": 7, "year": 2024, "amount": 45000},
            headers=auth_headers,
        )
        assert response.status_code == 200
        body = response.json()
        assert body["data_category"]["id"] == category_id
        assert body["data_budget"]["amount"] == 45000

        fetched = fetch_category(client, auth_headers, category_id, 7, 2024).json()
        assert fetched["data_budget"]["amount"] == 45000

    def test_update_renames_category(self, client, auth_headers):
        category_id = set_budget(client, auth_headers, name="food")["data_category"]["id"]
        response = client.post(
            f"/api/v1/category/update/{category_id}",
            json={"name": "Groceries", "month": 6, "year": 2024, "amount": 50000},
            headers=auth_headers,
        )
        assert response.json()["data_category"]["name"] == "groceries"

    def test_rename_onto_existing_name_conflicts(self, client, auth_headers):
        food_id = set_budget(client, auth_headers, name="food")["data_category"]["id"]
        set_budget(client, auth_headers, name="rent")
        response = client.post(
            f"/api/v1/category/update/{food_id}",
            json={"name": "rent", "month": 6, "year": 2024, "amount": 50000},
            headers=auth_headers,
        )
        assert response.status_code == 409

    def test_update_unknown_category(self, client, auth_headers):
        response = client.post(
            "/api/v1/category/update/4242",
            json={"name": "food", "month": 6, "year": 2024, "amount": 50000},
            headers=auth_headers,
        )
        assert response.status_code == 404
        assert response.json()["error"] == "Category not found"


class TestCategoryAccessAndDeletion:
    def test_other_users_category_is_not_found(self, client, register):
        _, budi = register(email="budi@example.com")
        _, siti = register(email="siti@example.com", name="Siti Aminah")
        category_id = set_budget(client, budi)["data_category"]["id"]

        response = fetch_category(client, siti, category_id, 6, 2024)
        assert response.status_code == 404

    def test_unknown_category_is_not_found(self, client, auth_headers):
        response = fetch_category(client, auth_headers, 4242, 6, 2024)
        assert response.status_code == 404
        assert response.json() == {
            "error": "Category not found",
            "message": "Category no longer exists",
        }

    def test_delete_removes_category(self, client, auth_headers):
        category_id = set_budget(client, auth_headers)["data_category"]["id"]
        response = client.get(f"/api/v1/category/delete/{category_id}", headers=auth_headers)
        assert response.status_code == 200
        assert response.json() == {"error": False, "message": "Category deletion successful"}
        assert fetch_category(client, auth_headers, category_id, 6, 2024).status_code == 404

    def test_delete_nonexistent_category_succeeds(self, client, auth_headers):
        response = client.get("/api/v1/category/delete/4242", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["error"] is False

    def test_delete_leaves_budgets_in_place(self, client, register, db_session):
        user, headers = register()
        category_id = set_budget(client, headers)["data_category"]["id"]
        client.get(f"/api/v1/category/delete/{category_id}", headers=headers)
        assert db_session.query(models.Budget).filter_by(category_id=category_id).count() == 1

    def test_cannot_delete_other_users_category(self, client, register):
        _, budi = register(email="budi@example.com")
        _, siti = register(email="siti@example.com", name="Siti Aminah")
        category_id = set_budget(client, budi)["data_category"]["id"]

        client.get(f"/api/v1/category/delete/{category_id}", headers=siti)
        assert fetch_category(client, budi, category_id, 6, 2024).status_code == 200

    def test_non_numeric_id_is_a_validation_error(self, client, auth_headers):
        response = client.get("/api/v1/category/abc", headers=auth_headers)
        assert response.status_code == 400
