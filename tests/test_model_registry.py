"""Tests for model records: versions, cloning, listings and partial updates."""

from unittest.mock import patch

import pytest
from bson import ObjectId

from modelhub.core.exceptions import AccessDeniedError, NotFoundError
from modelhub.services.model_registry_service import ModelRegistryService, can_modify_model, can_read_model


@pytest.fixture
def registry(db):
    return ModelRegistryService(db)


@pytest.fixture
def owner():
    return {"_id": ObjectId(), "role": "user"}


@pytest.fixture
def stranger():
    return {"_id": ObjectId(), "role": "user"}


@pytest.fixture
def model(registry, owner):
    return registry.create_model(user_id=owner["_id"], name="M1")


class TestCreate:
    def test_defaults(self, model, owner):
        assert model["status"] == "initialized"
        assert model["currentVersion"] == 0
        assert model["userId"] == owner["_id"]
        assert model["isPublic"] is False
        assert [layer["config"]["units"] for layer in model["architecture"]["layers"]] == [100, 50, 1]
        assert model["hyperparameters"]["optimizer"] == "adam"

    def test_unknown_id_is_not_found(self, registry):
        with pytest.raises(NotFoundError):
            registry.get_model(ObjectId())
        with pytest.raises(NotFoundError):
            registry.get_model("not-an-id")


class TestVersions:
    def test_numbers_increase_without_gaps(self, registry, model):
        for _ in range(3):
            updated = registry.add_version(model["_id"], model_path="/tmp/m")
        assert updated["currentVersion"] == 3
        assert [v["versionNumber"] for v in updated["versions"]] == [1, 2, 3]

    def test_default_path_uses_next_number(self, registry, model):
        updated = registry.add_version(model["_id"], default_path=lambda mid, n: f"model_{mid}_v{n}")
        assert updated["versions"][0]["modelPath"] == f"model_{model['_id']}_v1"
        assert updated["versions"][0]["description"] == "Version 1"

    def test_unknown_model(self, registry):
        with pytest.raises(NotFoundError):
            registry.add_version(ObjectId())

    def test_concurrent_bump_is_not_reused(self, registry, model):
        """A version written between read and write forces a retry with the next number."""
        real_find_one = registry.models.find_one
        calls = {"n": 0}

        def racing_find_one(*args, **kwargs):
            doc = real_find_one(*args, **kwargs)
            if calls["n"] == 0:
                calls["n"] += 1
                # another writer lands version 1 after our read
                registry.models.update_one(
                    {"_id": model["_id"]},
                    {"$set": {"currentVersion": 1}, "$push": {"versions": {"versionNumber": 1}}},
                )
            return doc

        with patch.object(registry.models, "find_one", side_effect=racing_find_one):
            updated = registry.add_version(model["_id"], model_path="/tmp/m")

        assert updated["currentVersion"] == 2
        assert [v["versionNumber"] for v in updated["versions"]] == [1, 2]


class TestClone:
    def test_private_model_needs_ownership(self, registry, model, stranger):
        with pytest.raises(AccessDeniedError):
            registry.clone(model["_id"], stranger)
        assert registry.models.count_documents({}) == 1

    def test_public_model_can_be_cloned(self, registry, model, stranger):
        registry.mark_saved(model["_id"], "/models/m1")
        registry.set_visibility(model["_id"], True)

        clone = registry.clone(model["_id"], stranger)
        assert clone["baseModel"] == model["_id"]
        assert clone["userId"] == stranger["_id"]
        assert clone["status"] == "initialized"
        assert clone["name"] == "M1 (Transfer)"
        assert clone["transferLearning"] == {"freezeBaseLayers": True, "baseModelPath": "/models/m1"}
        assert clone["architecture"] == model["architecture"]

    def test_owner_may_clone_without_freezing(self, registry, model, owner):
        clone = registry.clone(model["_id"], owner, name="tuned", freeze_base_layers=False)
        assert clone["name"] == "tuned"
        assert clone["transferLearning"]["freezeBaseLayers"] is False


class TestUpdates:
    def test_hyperparameters_merge_shallowly(self, registry, model):
        updated = registry.update_hyperparameters(model["_id"], {"learningRate": 0.01})
        assert updated["hyperparameters"]["learningRate"] == 0.01
        assert updated["hyperparameters"]["optimizer"] == "adam"

    def test_training_and_predictions_are_recorded(self, registry, model, stranger):
        registry.add_training_data(model["_id"], [[0.1] * 10], [[1]])
        registry.record_training(model["_id"], epochs=1, loss=0.5, accuracy=1.0)
        entry = registry.add_prediction(model["_id"], [[0.1] * 10], {"predictions": [[0.7]]}, user_id=stranger["_id"])

        stored = registry.get_model(model["_id"])
        assert stored["status"] == "trained"
        assert stored["trainingHistory"]["epochs"] == 1
        assert len(stored["trainingData"]) == 1
        assert stored["predictions"][0]["_id"] == entry["_id"]
        assert stored["predictions"][0]["userId"] == stranger["_id"]

    def test_visualizations_get_ids(self, registry, model):
        vis = registry.add_visualization(model["_id"], "lossCurve", {"points": [1, 0.5]})
        stored = registry.get_model(model["_id"])
        assert stored["visualizations"][0]["_id"] == vis["_id"]

    def test_status_must_be_known(self, registry, model):
        with pytest.raises(ValueError):
            registry.set_status(model["_id"], "exploded")


class TestListings:
    def test_public_listing_filters_and_counts(self, registry, owner):
        a = registry.create_model(user_id=owner["_id"], name="a", tags=["vision"])
        b = registry.create_model(user_id=owner["_id"], name="b", tags=["text"])
        registry.create_model(user_id=owner["_id"], name="c")
        registry.set_visibility(a["_id"], True)
        registry.set_visibility(b["_id"], True)

        rows, total = registry.list_public_models()
        assert total == 2
        assert "trainingData" not in rows[0]

        rows, total = registry.list_public_models(tag="vision")
        assert total == 1 and rows[0]["name"] == "a"

    def test_list_by_owner(self, registry, owner, stranger):
        registry.create_model(user_id=owner["_id"], name="mine")
        registry.create_model(user_id=stranger["_id"], name="theirs")
        assert [m["name"] for m in registry.list_models(user_id=owner["_id"])] == ["mine"]
        assert len(registry.list_models()) == 2


class TestPolicy:
    def test_admin_may_modify(self, model):
        admin = {"_id": ObjectId(), "role": "admin"}
        assert can_modify_model(model, admin)

    def test_private_model_hidden_from_strangers(self, model, stranger):
        assert not can_read_model(model, stranger)
        assert can_read_model({**model, "isPublic": True}, stranger)
