import unittest

from flagcraft import FlagCraft
from flagcraft.conditions import eval_condition, get_path, padded_version_string


class MyDict(dict):
    pass


class TestDictSubclass(unittest.TestCase):
    def test_get_path_with_subclass(self):
        attributes = MyDict({"user": MyDict({"id": "123", "name": "John"})})

        self.assertEqual(get_path(attributes, "user.id"), "123")
        self.assertEqual(get_path(attributes, "user.name"), "John")
        self.assertEqual(get_path(attributes, "user.nonexistent"), None)

    def test_eval_condition_with_subclass(self):
        attributes = MyDict({"company": "Acme", "meta": MyDict({"plan": "pro"})})

        self.assertTrue(eval_condition(attributes, {"company": "Acme"}))
        self.assertTrue(eval_condition(attributes, {"meta.plan": "pro"}))
        self.assertFalse(eval_condition(attributes, {"meta.plan": "free"}))


class TestMalformedConditions(unittest.TestCase):
    def test_never_raises(self):
        attributes = {"name": "hello", "tags": ["a"], "n": 1}
        malformed = [
            {"$or": "not-a-list"},
            {"$and": {"name": "hello"}},
            {"name": {"$in": None}},
            {"name": {"$gt": {"x": 1}}},
            {"tags": {"$all": "a"}},
            {"n": {"$size": 1}},
            {"name": {"$inGroup": 5}},
            {"name": {"$regex": None}},
            {"tags.x.y": {"$exists": True}},
        ]
        for condition in malformed:
            self.assertFalse(eval_condition(attributes, condition), condition)

    def test_condition_is_not_a_mapping(self):
        self.assertFalse(eval_condition({"a": 1}, ["a"]))

    def test_does_not_mutate_attributes(self):
        attributes = {"name": "John", "tags": ["A", "B"]}
        eval_condition(attributes, {"name": {"$ini": ["JOHN"]}, "tags": {"$alli": ["a"]}})
        self.assertEqual(attributes, {"name": "John", "tags": ["A", "B"]})


class TestVersionStrings(unittest.TestCase):
    def test_padding(self):
        self.assertEqual(padded_version_string("1.2.3"), "    1-    2-    3-~")
        self.assertEqual(padded_version_string("v1.0.0-rc.1+build"), "    1-    0-    0-rc-    1")
        self.assertEqual(padded_version_string(None), "    0")


def test_saved_groups_reach_feature_conditions():
    gb = FlagCraft(
        attributes={"id": "2"},
        saved_groups={"beta-testers": ["1", "2"]},
        features={
            "beta-feature": {
                "defaultValue": False,
                "rules": [{"condition": {"id": {"$inGroup": "beta-testers"}}, "force": True}],
            }
        },
    )
    assert gb.is_on("beta-feature")

    gb.set_saved_groups({"beta-testers": ["1"]})
    assert gb.is_off("beta-feature")

    gb.destroy()
