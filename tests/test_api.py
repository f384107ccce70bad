"""End-to-end tests through the HTTP API."""

import json
from pathlib import Path

import pytest

from modelhub.services.model_runtime_service import METADATA_FILE, RuntimeState

TEN = [0.1] * 10


def _initialize(client, headers, **body):
    resp = client.post("/api/ai/initialize", json={"name": "M1", **body}, headers=headers)
    assert resp.status_code == 200, resp.text
    return resp.json()["model"]["id"]


class TestHealthAndAuth:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["ok"] is True
        assert resp.headers["X-Request-ID"]

    def test_request_id_is_echoed(self, client):
        resp = client.get("/health", headers={"X-Request-ID": "abc123"})
        assert resp.headers["X-Request-ID"] == "abc123"

    def test_first_account_is_admin(self, register):
        _, first = register("u1")
        _, second = register("u2")
        assert first["role"] == "admin"
        assert second["role"] == "user"
        assert "password" not in first

    def test_login_and_profile(self, client, register):
        register("u1", email="u1@example.com")
        resp = client.post("/api/auth/login", json={"username": "u1@example.com", "password": "secret123"})
        assert resp.status_code == 200
        token = resp.json()["token"]

        resp = client.get("/api/auth/profile", headers={"Authorization": f"Bearer {token}"})
        assert resp.json()["user"]["username"] == "u1"

    def test_bad_login(self, client, register):
        register("u1")
        resp = client.post("/api/auth/login", json={"username": "u1", "password": "wrong"})
        assert resp.status_code == 401
        assert resp.json() == {"success": False, "message": "Invalid credentials"}

    def test_token_required(self, client):
        resp = client.post("/api/ai/initialize", json={})
        assert resp.status_code == 401
        resp = client.get("/api/auth/profile", headers={"Authorization": "Bearer garbage"})
        assert resp.status_code == 401

    def test_register_validation(self, client):
        resp = client.post("/api/auth/register", json={"username": "u1"})
        assert resp.status_code == 400
        assert resp.json()["success"] is False

    def test_admin_endpoints(self, client, register):
        admin, _ = register("u1")
        user, u2 = register("u2")

        assert client.get("/api/auth/users", headers=user).status_code == 403
        resp = client.get("/api/auth/users", headers=admin)
        assert resp.json()["total"] == 2

        resp = client.put("/api/auth/users/status", json={"userId": u2["_id"], "isActive": False}, headers=admin)
        assert resp.status_code == 200
        assert client.get("/api/auth/profile", headers=user).status_code == 403

    def test_change_password(self, client, register):
        headers, _ = register("u1")
        resp = client.put(
            "/api/auth/change-password",
            json={"currentPassword": "secret123", "newPassword": "another1"},
            headers=headers,
        )
        assert resp.status_code == 200
        resp = client.post("/api/auth/login", json={"username": "u1", "password": "another1"})
        assert resp.status_code == 200


class TestModelLifecycle:
    def test_initialize_then_train(self, client, register):
        """Register, initialize the default model and train it for one epoch."""
        headers, user = register("u1")
        assert user["role"] == "admin"
        model_id = _initialize(client, headers)

        model = client.get(f"/api/ai/models/{model_id}", headers=headers).json()["model"]
        assert model["status"] == "initialized"

        resp = client.post(
            "/api/ai/train",
            json={"modelId": model_id, "trainData": [TEN], "labels": [[1]], "epochs": 1},
            headers=headers,
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["result"]["epochs"] == 1

        model = client.get(f"/api/ai/models/{model_id}", headers=headers).json()["model"]
        assert model["status"] == "trained"
        assert model["trainingHistory"]["epochs"] == 1
        assert len(model["trainingData"]) == 1

    def test_predict_records_prediction(self, client, register):
        headers, _ = register("u1")
        model_id = _initialize(client, headers)
        resp = client.post("/api/ai/predict", json={"modelId": model_id, "inputData": [TEN, TEN]}, headers=headers)
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert len(body["predictions"]) == 2
        assert all(0.5 <= c <= 1.0 for c in body["confidence"])

        model = client.get(f"/api/ai/models/{model_id}", headers=headers).json()["model"]
        assert model["predictions"][0]["_id"] == body["id"]

    def test_custom_architecture(self, client, register):
        headers, _ = register("u1")
        arch = {
            "layers": [
                {"type": "dense", "config": {"units": 4, "activation": "relu", "inputShape": [3]}},
                {"type": "dense", "config": {"units": 2, "activation": "softmax"}},
            ],
        }
        model_id = _initialize(
            client, headers, architecture=arch, hyperparameters={"lossFunction": "categoricalCrossentropy"}
        )
        resp = client.get(f"/api/ai/models/{model_id}/summary", headers=headers)
        assert resp.status_code == 200
        assert [layer["outputShape"] for layer in resp.json()["summary"]["layers"]] == [[4], [2]]

    def test_unknown_layer_kind_is_400(self, client, register):
        headers, _ = register("u1")
        arch = {"layers": [{"type": "capsule", "config": {"units": 4, "inputShape": [3]}}]}
        resp = client.post("/api/ai/initialize", json={"architecture": arch}, headers=headers)
        assert resp.status_code == 400
        model_id = _initialize(client, headers)
        resp = client.put(
            "/api/ai/architecture",
            json={"modelId": model_id, "layers": arch["layers"]},
            headers=headers,
        )
        assert resp.status_code == 400

    def test_shape_mismatch_is_400(self, client, register):
        headers, _ = register("u1")
        arch = {
            "layers": [
                {"type": "dense", "config": {"units": 4, "inputShape": [3]}},
                {"type": "lstm", "config": {"units": 2}},
            ],
        }
        resp = client.post("/api/ai/initialize", json={"architecture": arch}, headers=headers)
        assert resp.status_code == 400
        assert "lstm" in resp.json()["message"]

    def test_wrong_row_shape_is_400(self, client, register):
        headers, _ = register("u1")
        model_id = _initialize(client, headers)
        resp = client.post("/api/ai/predict", json={"modelId": model_id, "inputData": [[1, 2]]}, headers=headers)
        assert resp.status_code == 400

    def test_rejected_training_rows_are_not_recorded(self, client, register):
        headers, _ = register("u1")
        model_id = _initialize(client, headers)
        resp = client.post(
            "/api/ai/train",
            json={"modelId": model_id, "trainData": [[1, 2]], "labels": [[1]]},
            headers=headers,
        )
        assert resp.status_code == 400
        model = client.get(f"/api/ai/models/{model_id}", headers=headers).json()["model"]
        assert model["trainingData"] == []
        assert model["status"] == "initialized"

    def test_prediction_is_attributed_to_caller(self, client, register):
        owner, owner_user = register("u1")
        _, other_user = register("u2")
        model_id = _initialize(client, owner)
        resp = client.post(
            "/api/ai/predict",
            json={"modelId": model_id, "inputData": [TEN], "userId": other_user["_id"]},
            headers=owner,
        )
        assert resp.status_code == 200, resp.text
        model = client.get(f"/api/ai/models/{model_id}", headers=owner).json()["model"]
        assert model["predictions"][0]["userId"] == owner_user["_id"]

    def test_unknown_model_is_404(self, client, register):
        headers, _ = register("u1")
        resp = client.post(
            "/api/ai/train",
            json={"modelId": "0" * 24, "trainData": [TEN], "labels": [[1]]},
            headers=headers,
        )
        assert resp.status_code == 404

    def test_versions_and_hyperparameters(self, client, register):
        headers, _ = register("u1")
        model_id = _initialize(client, headers)

        for _ in range(2):
            resp = client.post("/api/ai/version", json={"modelId": model_id}, headers=headers)
        model = resp.json()["model"]
        assert model["currentVersion"] == 2
        assert model["versions"][1]["modelPath"].endswith(f"model_{model_id}_v2")

        resp = client.put(
            "/api/ai/hyperparameters",
            json={"modelId": model_id, "hyperparameters": {"learningRate": 0.01}},
            headers=headers,
        )
        assert resp.json()["model"]["hyperparameters"]["learningRate"] == 0.01
        assert resp.json()["model"]["hyperparameters"]["optimizer"] == "adam"

        resp = client.put(
            "/api/ai/hyperparameters",
            json={"modelId": model_id, "hyperparameters": {"optimizer": "lion"}},
            headers=headers,
        )
        assert resp.status_code == 400

    def test_visualization(self, client, register):
        headers, _ = register("u1")
        model_id = _initialize(client, headers)
        resp = client.post(
            "/api/ai/visualization",
            json={"modelId": model_id, "type": "lossCurve", "data": {"points": [0.9, 0.4]}},
            headers=headers,
        )
        assert resp.status_code == 200
        assert resp.json()["visualization"]["type"] == "lossCurve"


class TestOwnership:
    def test_non_owner_cannot_mutate_private_model(self, client, register):
        owner, _ = register("u1")
        other, _ = register("u2")
        model_id = _initialize(client, owner)

        for method, path, body in (
            ("put", "/api/ai/visibility", {"modelId": model_id, "isPublic": True}),
            ("post", "/api/ai/version", {"modelId": model_id}),
            ("post", "/api/ai/train", {"modelId": model_id, "trainData": [TEN], "labels": [[1]]}),
            ("post", "/api/ai/clone", {"modelId": model_id}),
        ):
            resp = getattr(client, method)(path, json=body, headers=other)
            assert resp.status_code == 403, path

        model = client.get(f"/api/ai/models/{model_id}", headers=owner).json()["model"]
        assert model["isPublic"] is False
        assert model["currentVersion"] == 0
        assert model["trainingData"] == []
        assert client.get(f"/api/ai/models/{model_id}", headers=other).status_code == 403

    def test_save_path_stays_in_owners_folder(self, client, register, storage):
        alice, alice_user = register("u1")
        bob, bob_user = register("u2")
        bob_model = _initialize(client, bob, name="MB")
        bob_saved = client.post("/api/ai/save", json={"modelId": bob_model}, headers=bob).json()["path"]
        alice_model = _initialize(client, alice, name="MA")

        for target in (bob_saved, "../escaped", f"../{bob_user['_id']}/m", f"file://{bob_saved}"):
            resp = client.post("/api/ai/save", json={"modelId": alice_model, "savePath": target}, headers=alice)
            assert resp.status_code == 400, target

        metadata = json.loads((Path(bob_saved) / METADATA_FILE).read_text())
        assert metadata["modelId"] == bob_model
        assert not (storage.models_root / "escaped").exists()
        assert not storage.models_root.parent.joinpath("escaped").exists()

        resp = client.post("/api/ai/save", json={"modelId": alice_model, "savePath": "mine/v1"}, headers=alice)
        assert resp.status_code == 200, resp.text
        assert resp.json()["path"] == str((storage.models_root / alice_user["_id"] / "mine" / "v1").resolve())

    def test_stranger_cannot_reload_public_model(self, client, register, runtimes):
        owner, _ = register("u1")
        stranger, _ = register("u2")
        model_id = _initialize(client, owner)
        resp = client.post(
            "/api/ai/train",
            json={"modelId": model_id, "trainData": [TEN], "labels": [[1]], "epochs": 1},
            headers=owner,
        )
        assert resp.status_code == 200, resp.text
        client.put("/api/ai/visibility", json={"modelId": model_id, "isPublic": True}, headers=owner)

        resp = client.post(
            "/api/ai/load",
            json={"modelId": model_id, "newLayers": [{"type": "dense", "config": {"units": 2}}]},
            headers=stranger,
        )
        assert resp.status_code == 403
        with runtimes.session(model_id) as runtime:
            assert runtime.state is RuntimeState.TRAINED
            assert len(runtime.net.blocks) == 3

        # a public model is still usable for predictions
        resp = client.post("/api/ai/predict", json={"modelId": model_id, "inputData": [TEN]}, headers=stranger)
        assert resp.status_code == 200

    def test_admin_may_mutate(self, client, register):
        admin, _ = register("u1")
        owner, _ = register("u2")
        model_id = _initialize(client, owner)
        resp = client.put("/api/ai/visibility", json={"modelId": model_id, "isPublic": True}, headers=admin)
        assert resp.status_code == 200


class TestTransferLearning:
    def test_clone_public_model(self, client, register):
        """U1 publishes M1; U2 clones it with frozen base layers by default."""
        u1, _ = register("u1")
        u2, _ = register("u2")
        m1 = _initialize(client, u1)
        resp = client.put("/api/ai/visibility", json={"modelId": m1, "isPublic": True}, headers=u1)
        assert resp.json()["message"] == "Model is now public"

        resp = client.post("/api/ai/clone", json={"modelId": m1}, headers=u2)
        assert resp.status_code == 200, resp.text
        clone = resp.json()["model"]
        assert clone["baseModel"] == m1
        assert clone["transferLearning"]["freezeBaseLayers"] is True

        public = client.get("/api/ai/public-models").json()
        assert public["total"] == 1 and public["models"][0]["_id"] == m1

    def test_clone_trains_on_frozen_base(self, client, register):
        u1, _ = register("u1")
        u2, _ = register("u2")
        m1 = _initialize(client, u1)
        client.post("/api/ai/train", json={"modelId": m1, "trainData": [TEN], "labels": [[1]], "epochs": 1}, headers=u1)
        resp = client.post("/api/ai/save", json={"modelId": m1}, headers=u1)
        assert resp.status_code == 200, resp.text
        client.put("/api/ai/visibility", json={"modelId": m1, "isPublic": True}, headers=u1)

        clone_id = client.post("/api/ai/clone", json={"modelId": m1}, headers=u2).json()["model"]["id"]

        # the clone has no live runtime until it is loaded
        resp = client.post(
            "/api/ai/train",
            json={"modelId": clone_id, "trainData": [TEN], "labels": [[0]], "epochs": 1},
            headers=u2,
        )
        assert resp.status_code == 400

        resp = client.post("/api/ai/load", json={"modelId": clone_id}, headers=u2)
        assert resp.status_code == 200, resp.text
        summary = resp.json()["summary"]
        assert [layer["trainable"] for layer in summary["layers"]] == [False, False, True]
        assert summary["frozenLayers"] == [0, 1]

        resp = client.post(
            "/api/ai/train",
            json={"modelId": clone_id, "trainData": [TEN], "labels": [[0]], "epochs": 1},
            headers=u2,
        )
        assert resp.status_code == 200, resp.text


class TestDatasets:
    def test_duplicate_names_per_creator(self, client, register):
        """U2 creates "sales" twice (second rejected); U3 may still use the name."""
        register("u1")
        u2, _ = register("u2")
        u3, _ = register("u3")

        body = {"name": "sales", "format": "csv"}
        assert client.post("/api/datasets", json=body, headers=u2).status_code == 201
        resp = client.post("/api/datasets", json=body, headers=u2)
        assert resp.status_code == 400
        assert resp.json()["success"] is False
        assert client.post("/api/datasets", json=body, headers=u3).status_code == 201

        listing = client.get("/api/datasets", headers=u2).json()
        assert listing["total"] == 1

    def test_full_dataset_flow(self, client, register):
        owner, _ = register("u1")
        friend, friend_user = register("u2")
        ds = client.post("/api/datasets", json={"name": "iris", "format": "csv"}, headers=owner).json()["data"]
        ds_id = ds["_id"]

        assert client.get(f"/api/datasets/{ds_id}", headers=friend).status_code == 403
        resp = client.post(
            f"/api/datasets/{ds_id}/share",
            json={"userId": friend_user["_id"], "accessLevel": "edit"},
            headers=owner,
        )
        assert resp.status_code == 200
        assert client.get(f"/api/datasets/{ds_id}", headers=friend).status_code == 200

        resp = client.put(f"/api/datasets/{ds_id}/metadata", json={"recordCount": 150}, headers=friend)
        assert resp.json()["data"]["metadata"]["recordCount"] == 150
        resp = client.post(f"/api/datasets/{ds_id}/versions", json={"description": "v1"}, headers=friend)
        assert resp.status_code == 403

        client.post(f"/api/datasets/{ds_id}/preprocessing", json={"name": "normalize"}, headers=owner)
        resp = client.post(f"/api/datasets/{ds_id}/versions", json={}, headers=owner)
        assert resp.json()["data"]["versions"][0]["storageInfo"]["fileName"] == "iris_v1.csv"

        assert client.delete(f"/api/datasets/{ds_id}", headers=owner).status_code == 200
        assert client.get(f"/api/datasets/{ds_id}", headers=owner).status_code == 404

    @pytest.mark.parametrize("fmt", ["xml", ""])
    def test_format_is_validated(self, client, register, fmt):
        headers, _ = register("u1")
        resp = client.post("/api/datasets", json={"name": "x", "format": fmt}, headers=headers)
        assert resp.status_code == 400
