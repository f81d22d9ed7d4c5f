"""
HTTP tests for warehouse management.
"""


async def _create(client, name, location=None):
    return await client.post("/api/warehouses/", json={"name": name, "location": location})


class TestWarehouses:
    async def test_create_and_list(self, client):
        created = await _create(client, "  North  ", "Dock 4")
        await _create(client, "alpha")

        assert created.status_code == 201
        assert created.json()["name"] == "North"
        assert created.json()["location"] == "Dock 4"

        names = [w["name"] for w in (await client.get("/api/warehouses/")).json()]
        assert names == ["alpha", "North"]

    async def test_names_are_unique_case_insensitively(self, client):
        await _create(client, "North")

        resp = await _create(client, "NORTH")

        assert resp.status_code == 409
        assert resp.json()["kind"] == "Conflict"

    async def test_blank_name_is_rejected(self, client):
        assert (await _create(client, "   ")).status_code == 422

    async def test_rename_carries_stock_along(self, client):
        wh = (await _create(client, "North")).json()
        await client.post("/api/items", json={"name": "Bolt", "warehouse": "North", "quantity": 3})

        resp = await client.put(f"/api/warehouses/{wh['id']}", json={"name": "Central"})

        assert resp.status_code == 200
        assert resp.json()["name"] == "Central"
        items = (await client.get("/api/items")).json()["items"]
        assert [(i["name"], i["warehouse"]) for i in items] == [("Bolt", "Central")]

    async def test_rename_onto_existing_name_is_a_conflict(self, client):
        north = (await _create(client, "North")).json()
        await _create(client, "South")

        resp = await client.put(f"/api/warehouses/{north['id']}", json={"name": "south"})

        assert resp.status_code == 409

    async def test_update_unknown_warehouse(self, client):
        resp = await client.put("/api/warehouses/00000000-0000-0000-0000-000000000000", json={"location": "x"})

        assert resp.status_code == 404
        assert resp.json()["kind"] == "NotFound"

    async def test_cannot_delete_warehouse_holding_stock(self, client):
        wh = (await _create(client, "North")).json()
        await client.post("/api/items", json={"name": "Bolt", "warehouse": "North", "quantity": 3})

        resp = await client.delete(f"/api/warehouses/{wh['id']}")

        assert resp.status_code == 409
        assert resp.json()["kind"] == "Conflict"

    async def test_delete_empty_warehouse_removes_zero_records(self, client):
        wh = (await _create(client, "North")).json()
        item = (
            await client.post("/api/items", json={"name": "Bolt", "warehouse": "North", "quantity": 3})
        ).json()
        await client.post(f"/api/items/{item['id']}/reduce", json={"quantity": 3})

        resp = await client.delete(f"/api/warehouses/{wh['id']}")

        assert resp.status_code == 200
        assert (await client.get("/api/warehouses/")).json() == []
        assert (await client.get("/api/items")).json()["totalItems"] == 0
        assert (await client.get("/api/warehouse-quantities")).json() == []

    async def test_viewer_cannot_create(self, client, actor, viewer_user):
        actor.user = viewer_user

        assert (await _create(client, "North")).status_code == 403
