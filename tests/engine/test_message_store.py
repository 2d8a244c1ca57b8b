import dataclasses
import unittest

from agno_chat import message_store
from agno_chat.models import Role
from tests.engine.base import make_message


class MessageStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.u1 = make_message("u1", Role.USER)
        self.a1 = make_message("a1", Role.ASSISTANT)
        self.u2 = make_message("u2", Role.USER)
        self.messages = (self.u1, self.a1, self.u2)

    def test_append_returns_new_tuple(self) -> None:
        a2 = make_message("a2", Role.ASSISTANT)
        result = message_store.append(self.messages, a2)
        self.assertEqual(("u1", "a1", "u2", "a2"), tuple(m.id for m in result))
        self.assertEqual(3, len(self.messages))

    def test_replace_by_id_keeps_other_entries_by_reference(self) -> None:
        result = message_store.replace_by_id(self.messages, "a1", lambda m: dataclasses.replace(m, text="new"))
        self.assertIs(self.u1, result[0])
        self.assertIs(self.u2, result[2])
        self.assertEqual("new", result[1].text)
        self.assertEqual("a1", self.a1.text)

    def test_replace_by_unknown_id_changes_nothing(self) -> None:
        result = message_store.replace_by_id(self.messages, "zz", lambda m: dataclasses.replace(m, text="x"))
        self.assertEqual(self.messages, result)

    def test_remove_range(self) -> None:
        self.assertEqual((self.u2,), message_store.remove_range(self.messages, 0, 2))
        self.assertEqual(self.messages, message_store.remove_range(self.messages, 1, 0))

    def test_truncate_from(self) -> None:
        self.assertEqual((self.u1,), message_store.truncate_from(self.messages, 1))
        self.assertEqual((), message_store.truncate_from(self.messages, 0))

    def test_insert_at_clamps_index(self) -> None:
        s1 = make_message("s1", Role.SYSTEM)
        self.assertEqual("s1", message_store.insert_at(self.messages, 0, s1)[0].id)
        self.assertEqual("s1", message_store.insert_at(self.messages, 99, s1)[-1].id)

    def test_deletion_range_pairs_turns(self) -> None:
        a2 = make_message("a2", Role.ASSISTANT)
        messages = (*self.messages, a2)
        self.assertEqual((0, 2), message_store.deletion_range(messages, 0))
        self.assertEqual((0, 2), message_store.deletion_range(messages, 1))
        self.assertEqual((2, 2), message_store.deletion_range(messages, 3))
        self.assertEqual((2, 1), message_store.deletion_range(self.messages, 2))

    def test_find_and_index_of(self) -> None:
        self.assertEqual(1, message_store.index_of(self.messages, "a1"))
        self.assertEqual(-1, message_store.index_of(self.messages, "nope"))
        self.assertIs(self.u2, message_store.find(self.messages, "u2"))
        self.assertIsNone(message_store.find(self.messages, "nope"))


if __name__ == "__main__":
    unittest.main()
