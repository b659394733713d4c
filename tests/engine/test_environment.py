"""Tests for the run binding environment."""

from relay.engine.environment import BindingEnvironment


class TestCreate:
    def test_seeds_standard_names(self):
        env = BindingEnvironment.create(
            user_id="u1",
            trigger_payload={"x": 1},
            credentials={"openai": "sk"},
            tenant_id="org-1",
            workflow_id="wf-1",
            run_id="r1",
        )
        assert env["trigger"] == {"x": 1}
        assert env["user"] == {"id": "u1", "openai": "sk"}
        assert env["openai"] == "sk"
        assert env["tenant"] == {"id": "org-1"}
        assert env["workflow"] == {"id": "wf-1", "runId": "r1"}

    def test_empty_payload_is_empty_dict(self):
        env = BindingEnvironment.create(user_id="u1")
        assert env["trigger"] == {}
        assert "tenant" not in env

    def test_payload_is_copied(self):
        payload = {"x": 1}
        env = BindingEnvironment.create(user_id="u1", trigger_payload=payload)
        env["trigger"]["x"] = 2
        assert payload == {"x": 1}


class TestBinding:
    def test_bind_and_resolve(self):
        env = BindingEnvironment()
        env.bind("result", {"items": [1, 2]})
        assert env.resolve("result.items[1]") == 2

    def test_scoped_restores_previous_value(self):
        env = BindingEnvironment({"item": "outer"})
        with env.scoped(item="inner", item_index=0):
            assert env["item"] == "inner"
            assert env["item_index"] == 0
        assert env["item"] == "outer"
        assert "item_index" not in env

    def test_scoped_restores_on_error(self):
        env = BindingEnvironment()
        try:
            with env.scoped(item=1):
                raise RuntimeError
        except RuntimeError:
            pass
        assert "item" not in env

    def test_snapshot_is_deep_copy(self):
        env = BindingEnvironment({"a": {"b": 1}})
        snap = env.snapshot()
        snap["a"]["b"] = 2
        assert env["a"]["b"] == 1
